from datetime import datetime
from typing import List, Optional, Tuple

from sqlalchemy.exc import IntegrityError

from foodmarket.db import SessionLocal  # short-lived sessions so state is visible immediately
from foodmarket.models.idempotency import IdempotencyRecord, IdempotencyStatus
from foodmarket.utils.log import get_logger

log = get_logger("idempotency")


class IdempotencyRepository:
    """
    Idempotency keys live outside the caller's unit of work: every write is
    committed in its own short-lived session so concurrent requests with the
    same key see each other's markers at once.
    """

    def __init__(self, session_factory=SessionLocal):
        self.session_factory = session_factory

    def get(self, key: str) -> Optional[IdempotencyRecord]:
        """Fresh read of the record for `key` (detached; loaded columns stay readable)."""
        with self.session_factory() as s:
            return (
                s.query(IdempotencyRecord)
                .filter(IdempotencyRecord.key == key)
                .first()
            )

    def begin(
        self, key: str, operation: str, fingerprint: Optional[str] = None
    ) -> Tuple[IdempotencyRecord, bool]:
        """
        Atomically ensure an idempotency row exists.
        Returns (record, created_flag)
          - created_flag == True  -> this call inserted the IN_PROGRESS row (owner)
          - created_flag == False -> row already existed (concurrent / previous request)

        The unique constraint on `key` closes the check-then-act race.
        """
        created = False
        log.debug(f"begin(): trying insert key={key!r}")
        try:
            with self.session_factory() as s:
                rec = IdempotencyRecord(
                    key=key,
                    operation=operation,
                    request_fingerprint=fingerprint,
                    status=IdempotencyStatus.IN_PROGRESS,
                )
                s.add(rec)
                s.commit()
                created = True
        except IntegrityError:
            log.debug(f"begin(): insert collision for key={key!r}")

        return self.get(key), created

    def reclaim(self, key: str) -> bool:
        """
        Take ownership of a FAILED record again (compare-and-swap FAILED -> IN_PROGRESS).
        Only one of several concurrent retries wins.
        """
        with self.session_factory() as s:
            n = (
                s.query(IdempotencyRecord)
                .filter(
                    IdempotencyRecord.key == key,
                    IdempotencyRecord.status == IdempotencyStatus.FAILED,
                )
                .update(
                    {
                        IdempotencyRecord.status: IdempotencyStatus.IN_PROGRESS,
                        IdempotencyRecord.last_error: None,
                    },
                    synchronize_session=False,
                )
            )
            s.commit()
        log.debug(f"reclaim(): key={key!r} won={n == 1}")
        return n == 1

    def record_progress(self, key: str, partial_body: dict) -> bool:
        """
        Store what is known so far (e.g. the committed order id) while the
        record stays IN_PROGRESS; waiters keep polling until it completes.
        """
        with self.session_factory() as s:
            n = (
                s.query(IdempotencyRecord)
                .filter(
                    IdempotencyRecord.key == key,
                    IdempotencyRecord.status == IdempotencyStatus.IN_PROGRESS,
                )
                .update(
                    {IdempotencyRecord.response_body: partial_body},
                    synchronize_session=False,
                )
            )
            s.commit()
        return n == 1

    def mark_completed(self, key: str, response_body: dict) -> IdempotencyRecord:
        """Mark an idempotency record as COMPLETED and persist response_body."""
        with self.session_factory() as s:
            rec = (
                s.query(IdempotencyRecord)
                .filter(IdempotencyRecord.key == key)
                .first()
            )
            if not rec:
                raise RuntimeError("Idempotency record missing for key: " + str(key))
            rec.status = IdempotencyStatus.COMPLETED
            rec.response_body = response_body
            rec.last_error = None
            s.commit()
            log.debug(
                f"mark_completed(): key={key!r} response_keys={sorted(response_body)}"
            )
        return self.get(key)

    def mark_failed(self, key: str, error_message: str) -> Optional[IdempotencyRecord]:
        with self.session_factory() as s:
            rec = (
                s.query(IdempotencyRecord)
                .filter(IdempotencyRecord.key == key)
                .first()
            )
            if not rec:
                return None
            # a completed record is the canonical answer; never downgrade it
            if rec.status != IdempotencyStatus.COMPLETED:
                rec.status = IdempotencyStatus.FAILED
                rec.last_error = error_message[:1024]
            s.commit()
        return self.get(key)

    def release_stale(self, older_than: datetime) -> List[str]:
        """Mark IN_PROGRESS records last touched before `older_than` as FAILED."""
        with self.session_factory() as s:
            stale = (
                s.query(IdempotencyRecord)
                .filter(
                    IdempotencyRecord.status == IdempotencyStatus.IN_PROGRESS,
                    IdempotencyRecord.updated_at < older_than,
                )
                .all()
            )
            keys = []
            for rec in stale:
                rec.status = IdempotencyStatus.FAILED
                rec.last_error = "abandoned in progress"
                keys.append(rec.key)
            s.commit()
        return keys
