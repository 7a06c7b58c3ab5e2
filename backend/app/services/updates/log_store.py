# backend/app/services/updates/log_store.py
"""
Async facade over the per-user update log.

Seqno allocation happens entirely inside the database: a transaction-scoped
advisory lock on PostgreSQL, then read-max-then-insert, with the unique
(user_id, seqno) key as the backstop on every dialect. A collision rolls the
transaction back and retries with a fresh session.

Blocking SQLAlchemy work runs in worker threads via ``asyncio.to_thread``.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Dict, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.exceptions import StoreUnavailable, is_db_pool_exhaustion
from app.core.metrics import (
    UPDATES_APPEND_FAILURES_TOTAL,
    UPDATES_APPEND_RETRIES_TOTAL,
    UPDATES_APPENDED_TOTAL,
    UPDATES_TRIMMED_ROWS_TOTAL,
)
from app.database import SessionLocal, with_db_retry
from app.models.user_update import SEQNO_UNIQUE_CONSTRAINT
from app.repositories.user_update_repository import UserUpdateRepository
from app.schemas.updates import UpdateEnvelope, UpdatesDiff

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], Session]


def is_seqno_conflict(exc: IntegrityError) -> bool:
    """True when the violation is the (user_id, seqno) key and a retry can succeed."""
    orig = getattr(exc, "orig", None)
    diag = getattr(orig, "diag", None)
    constraint = getattr(diag, "constraint_name", None)
    if constraint:
        return bool(constraint == SEQNO_UNIQUE_CONSTRAINT)
    message = str(orig if orig is not None else exc)
    # SQLite reports columns rather than the constraint name
    return SEQNO_UNIQUE_CONSTRAINT in message or "user_update.seqno" in message


class UpdateLogStore:
    """Append and diff operations on the ``user_update`` table."""

    def __init__(
        self,
        session_factory: SessionFactory = SessionLocal,
        *,
        max_attempts: Optional[int] = None,
        max_retained: Optional[int] = None,
        trim_every: Optional[int] = None,
    ) -> None:
        self._session_factory = session_factory
        self.max_attempts = max(1, max_attempts or settings.updates_append_max_attempts)
        self.max_retained = (
            settings.updates_max_retained if max_retained is None else max_retained
        )
        self.trim_every = max(1, trim_every or settings.updates_trim_every)

    # ------------------------------------------------------------------ append
    async def append(
        self, user_id: str, event_type: str, payload: Dict[str, Any]
    ) -> UpdateEnvelope:
        return await asyncio.to_thread(self.append_sync, user_id, event_type, payload)

    def append_sync(
        self, user_id: str, event_type: str, payload: Dict[str, Any]
    ) -> UpdateEnvelope:
        """
        Persist one envelope for ``user_id`` with the next seqno.

        Raises:
            StoreUnavailable: on any persistence failure, or when every attempt
                collided on the seqno key.
        """
        last_conflict: Optional[IntegrityError] = None

        for attempt in range(1, self.max_attempts + 1):
            db = self._session_factory()
            try:
                repo = UserUpdateRepository(db)
                repo.lock_user_sequence(user_id)
                seqno = repo.head_seqno(user_id) + 1
                row = repo.insert(user_id, seqno, event_type, payload)
                trimmed = repo.trim(user_id, self.max_retained) if self._should_trim(seqno) else 0
                envelope = UpdateEnvelope.from_row(row)
                db.commit()
            except IntegrityError as exc:
                db.rollback()
                if not is_seqno_conflict(exc):
                    self._record_failure("integrity", user_id, event_type, exc)
                    raise StoreUnavailable(
                        "Update log rejected the append",
                        details={"user_id": user_id, "event_type": event_type},
                    ) from exc
                last_conflict = exc
                UPDATES_APPEND_RETRIES_TOTAL.inc()
                logger.info(
                    "[UPDATES-STORE] Seqno conflict, retrying append",
                    extra={"user_id": user_id, "attempt": attempt},
                )
                continue
            except SQLAlchemyError as exc:
                db.rollback()
                reason = "pool_exhausted" if is_db_pool_exhaustion(exc) else "database"
                self._record_failure(reason, user_id, event_type, exc)
                raise StoreUnavailable(
                    "Update log unavailable",
                    details={"user_id": user_id, "event_type": event_type, "reason": reason},
                ) from exc
            finally:
                db.close()

            UPDATES_APPENDED_TOTAL.labels(event_type=event_type).inc()
            if trimmed:
                UPDATES_TRIMMED_ROWS_TOTAL.inc(trimmed)
            logger.debug(
                "[UPDATES-STORE] Appended envelope",
                extra={"user_id": user_id, "seqno": envelope.seqno, "event_type": event_type},
            )
            return envelope

        self._record_failure("retries_exhausted", user_id, event_type, last_conflict)
        raise StoreUnavailable(
            f"Could not allocate a seqno after {self.max_attempts} attempts",
            details={"user_id": user_id, "event_type": event_type, "reason": "retries_exhausted"},
        ) from last_conflict

    def _should_trim(self, seqno: int) -> bool:
        if self.max_retained <= 0:
            return False
        return seqno > self.max_retained and seqno % self.trim_every == 0

    @staticmethod
    def _record_failure(
        reason: str, user_id: str, event_type: str, exc: Optional[BaseException]
    ) -> None:
        UPDATES_APPEND_FAILURES_TOTAL.labels(reason=reason).inc()
        logger.error(
            "[UPDATES-STORE] Append failed for user %s: %s",
            user_id,
            exc,
            extra={"user_id": user_id, "event_type": event_type, "reason": reason},
        )

    # -------------------------------------------------------------------- diff
    async def diff_get(self, user_id: str, offset: int, limit: int) -> UpdatesDiff:
        return await asyncio.to_thread(self.diff_get_sync, user_id, offset, limit)

    def diff_get_sync(self, user_id: str, offset: int, limit: int) -> UpdatesDiff:
        """
        Envelopes with ``seqno > offset`` in ascending order, at most ``limit``.

        One extra row is read to decide ``has_more`` without a count query.
        """
        try:
            return with_db_retry(
                "updates.diff_get", lambda: self._read_page(user_id, offset, limit)
            )
        except SQLAlchemyError as exc:
            logger.error(
                "[UPDATES-STORE] Diff failed for user %s: %s",
                user_id,
                exc,
                extra={"user_id": user_id, "offset": offset},
            )
            raise StoreUnavailable(
                "Update log unavailable",
                details={"user_id": user_id, "offset": offset},
            ) from exc

    def _read_page(self, user_id: str, offset: int, limit: int) -> UpdatesDiff:
        db = self._session_factory()
        try:
            repo = UserUpdateRepository(db)
            rows = repo.list_after(user_id, offset, limit + 1)
            has_more = len(rows) > limit
            envelopes = [UpdateEnvelope.from_row(row) for row in rows[:limit]]
            head = repo.head_seqno(user_id)
            earliest = repo.earliest_seqno(user_id)
        finally:
            db.close()

        return UpdatesDiff(
            envelopes=envelopes,
            next_offset=envelopes[-1].seqno if envelopes else offset,
            has_more=has_more,
            head_offset=head,
            reset_required=earliest is not None and offset < earliest - 1,
        )

