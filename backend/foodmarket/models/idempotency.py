import enum
from datetime import datetime, timezone

from foodmarket.db import Base
from sqlalchemy import JSON, Column, DateTime, Enum, Integer, String


def _utcnow():
    return datetime.now(timezone.utc)


class IdempotencyStatus(enum.Enum):
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class IdempotencyRecord(Base):
    __tablename__ = "idempotency_records"
    id = Column(Integer, primary_key=True, autoincrement=True)
    key = Column(String(160), unique=True, nullable=False, index=True)
    operation = Column(String(64), nullable=False)
    request_fingerprint = Column(String(128), nullable=True)
    status = Column(
        Enum(IdempotencyStatus), nullable=False, default=IdempotencyStatus.IN_PROGRESS
    )
    response_body = Column(JSON, nullable=True)
    last_error = Column(String(1024), nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)
