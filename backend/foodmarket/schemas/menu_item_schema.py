from typing import Optional

from pydantic import BaseModel, ConfigDict


class MenuItemOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: str
    restaurant_id: str
    name: str
    description: Optional[str] = None
    category: Optional[str] = None
    price_cents: int
    active: bool
