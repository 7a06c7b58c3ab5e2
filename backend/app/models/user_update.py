# backend/app/models/user_update.py
"""
Per-user update log.

Every durable update is stored once per recipient. ``seqno`` is the
recipient's inbox cursor: unique per user, strictly increasing, never reused.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import BigInteger, Column, DateTime, Index, String, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.sql import func
from sqlalchemy.types import JSON
import ulid

from app.database import Base

SEQNO_UNIQUE_CONSTRAINT = "uq_user_update_user_seqno"


def _now_utc() -> datetime:
    """Return timezone-aware UTC timestamp for default factories."""
    return datetime.now(timezone.utc)


class UserUpdate(Base):
    """One envelope in a single recipient's inbox."""

    __tablename__ = "user_update"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    user_id = Column(String(64), nullable=False)
    seqno = Column(BigInteger, nullable=False)
    event_type = Column(String(100), nullable=False)
    payload = Column(
        JSONB(astext_type=Text()).with_variant(JSON(), "sqlite"),
        nullable=False,
        default=dict,
    )
    created_at = Column(
        DateTime(timezone=True), nullable=False, default=_now_utc, server_default=func.now()
    )

    __table_args__ = (
        UniqueConstraint("user_id", "seqno", name=SEQNO_UNIQUE_CONSTRAINT),
        Index("ix_user_update_user_created", "user_id", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<UserUpdate user={self.user_id} seqno={self.seqno} type={self.event_type}>"
