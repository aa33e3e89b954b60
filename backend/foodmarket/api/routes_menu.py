from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from foodmarket.db import get_db
from foodmarket.repositories.menu_item_repo import MenuItemRepository
from foodmarket.schemas.menu_item_schema import MenuItemOut

router = APIRouter(tags=["menu"])


@router.get("", summary="List menu items")
def list_menu_items(
    restaurant_id: Optional[str] = Query(None),
    q: Optional[str] = Query(None, description="search term"),
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=200),
    db: Session = Depends(get_db),
):
    repo = MenuItemRepository(db)
    items, total = repo.list(restaurant_id=restaurant_id, q=q, page=page, size=size)
    return {
        "items": [MenuItemOut.model_validate(m).model_dump() for m in items],
        "total": total,
    }


@router.get("/{menu_item_id}", summary="Get menu item")
def get_menu_item(menu_item_id: str, db: Session = Depends(get_db)):
    m = MenuItemRepository(db).get_active(menu_item_id)
    if not m:
        raise HTTPException(status_code=404, detail="Menu item not found")
    return MenuItemOut.model_validate(m).model_dump()
