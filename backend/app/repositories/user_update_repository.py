# backend/app/repositories/user_update_repository.py
"""
Repository for the per-user update log.

All methods run inside the caller's transaction; the log store decides when
to commit, roll back or retry. Sequence allocation is serialized by the
database (advisory lock on PostgreSQL, unique (user_id, seqno) key everywhere).
"""

from __future__ import annotations

import logging
from typing import Any, Optional, cast

from sqlalchemy import delete, func, select, text
from sqlalchemy.orm import Session

from app.database.session_utils import get_dialect_name
from app.models.user_update import UserUpdate

logger = logging.getLogger(__name__)


class UserUpdateRepository:
    """Data access helpers for ``user_update`` rows."""

    def __init__(self, db: Session):
        self.db = db
        self._dialect = get_dialect_name(db, default="postgresql").lower()

    # ------------------------------------------------------------------ writes
    def lock_user_sequence(self, user_id: str) -> None:
        """
        Serialize seqno allocation for ``user_id`` until the transaction ends.

        Only PostgreSQL supports transaction-scoped advisory locks; other
        dialects rely on the unique key plus retry.
        """
        if self._dialect == "postgresql":
            self.db.execute(
                text("SELECT pg_advisory_xact_lock(hashtext(:user_id))"),
                {"user_id": user_id},
            )

    def insert(
        self,
        user_id: str,
        seqno: int,
        event_type: str,
        payload: dict[str, Any],
    ) -> UserUpdate:
        """Add a row and flush so constraint violations surface immediately."""
        row = UserUpdate(
            user_id=user_id,
            seqno=seqno,
            event_type=event_type,
            payload=payload,
        )
        self.db.add(row)
        self.db.flush()
        return row

    def trim(self, user_id: str, keep: int) -> int:
        """
        Delete all but the newest ``keep`` rows for a user.

        Returns the number of rows removed.
        """
        cutoff = self.db.execute(
            select(UserUpdate.seqno)
            .where(UserUpdate.user_id == user_id)
            .order_by(UserUpdate.seqno.desc())
            .offset(keep)
            .limit(1)
        ).scalar_one_or_none()
        if cutoff is None:
            return 0

        result = self.db.execute(
            delete(UserUpdate)
            .where(UserUpdate.user_id == user_id)
            .where(UserUpdate.seqno <= cutoff)
        )
        removed = int(getattr(result, "rowcount", 0) or 0)
        logger.info(
            "[UPDATES-STORE] Trimmed update log",
            extra={"user_id": user_id, "removed": removed, "cutoff_seqno": cutoff},
        )
        return removed

    # ----------------------------------------------------------------- readers
    def head_seqno(self, user_id: str) -> int:
        """Highest seqno stored for the user, 0 when the log is empty."""
        value = self.db.execute(
            select(func.max(UserUpdate.seqno)).where(UserUpdate.user_id == user_id)
        ).scalar_one_or_none()
        return int(value or 0)

    def earliest_seqno(self, user_id: str) -> Optional[int]:
        """Lowest retained seqno, or None when the log is empty."""
        value = self.db.execute(
            select(func.min(UserUpdate.seqno)).where(UserUpdate.user_id == user_id)
        ).scalar_one_or_none()
        return int(value) if value is not None else None

    def list_after(self, user_id: str, offset: int, limit: int) -> list[UserUpdate]:
        """Rows with ``seqno > offset`` in ascending order, at most ``limit``."""
        stmt = (
            select(UserUpdate)
            .where(UserUpdate.user_id == user_id)
            .where(UserUpdate.seqno > offset)
            .order_by(UserUpdate.seqno.asc())
            .limit(limit)
        )
        return cast(list[UserUpdate], list(self.db.execute(stmt).scalars().all()))
