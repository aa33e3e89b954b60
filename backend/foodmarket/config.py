from pydantic_settings import BaseSettings
from typing import List, Optional

class Settings(BaseSettings):
    DATABASE_URL: str = "sqlite:///./dev.db"
    APP_HOST: str = "127.0.0.1"
    APP_PORT: int = 8000
    FRONTEND_ORIGINS: List[str] = ["http://localhost:3000"]
    LOG_LEVEL: str = "INFO"

    # pricing policy inputs
    TAX_RATE: float = 0.08
    DELIVERY_FEE_CENTS: int = 299
    SERVICE_FEE_RATE: float = 0.02
    SERVICE_FEE_CAP_CENTS: int = 500

    # payment collaborators (mock adapters are used when the URLs are unset)
    PAYMENT_READINESS_URL: Optional[str] = None
    PAYMENT_READINESS_TIMEOUT_SECONDS: float = 3.0
    HOSTED_CHECKOUT_URL: Optional[str] = None
    HOSTED_CHECKOUT_TIMEOUT_SECONDS: float = 10.0
    PAYMENT_MOCK_DELAY_MS: int = 0

    CART_LOCK_TIMEOUT_SECONDS: float = 10.0
    CART_LOCK_STRIPES: int = 64
    IDEMPOTENCY_WAIT_SECONDS: float = 5.0
    IDEMPOTENCY_STALE_SECONDS: int = 300
    CHECKOUT_SESSION_TTL_SECONDS: int = 86400
    RECONCILE_INTERVAL_SECONDS: int = 60

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"

settings = Settings()
