# backend/app/schemas/updates.py
"""
Wire schemas for the update-delivery subsystem.

Envelopes are serialized in camelCase; ``payload`` is opaque and passed
through untouched.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Dict, List, Literal

from pydantic import BaseModel, ConfigDict, Field

from ._strict_base import CamelModel, StrictModel

if TYPE_CHECKING:
    from app.models.user_update import UserUpdate


def epoch_ms(value: datetime | None) -> int:
    """Convert a timestamp to epoch milliseconds (naive values are UTC)."""
    if value is None:
        value = datetime.now(timezone.utc)
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return int(value.timestamp() * 1000)


class UpdateEnvelope(CamelModel):
    """One durable update in a recipient's inbox."""

    id: str
    user_id: str
    seqno: int
    event_type: str
    payload: Dict[str, Any] = Field(default_factory=dict)
    created_at: int = Field(..., description="Persistence time, epoch milliseconds")

    @classmethod
    def from_row(cls, row: "UserUpdate") -> "UpdateEnvelope":
        return cls(
            id=str(row.id),
            user_id=str(row.user_id),
            seqno=int(row.seqno),
            event_type=str(row.event_type),
            payload=dict(row.payload or {}),
            created_at=epoch_ms(row.created_at),
        )


class EphemeralEnvelope(CamelModel):
    """Best-effort signal; never stored and carries no seqno."""

    user_id: str
    event_type: str
    payload: Dict[str, Any] = Field(default_factory=dict)
    created_at: int = Field(default_factory=lambda: epoch_ms(None))


class UpdateNotice(CamelModel):
    """Pub/sub wake-up: something new exists for ``user_id`` up to ``seqno``."""

    user_id: str
    seqno: int


class UpdatesDiff(CamelModel):
    envelopes: List[UpdateEnvelope]
    next_offset: int
    has_more: bool
    head_offset: int = 0
    reset_required: bool = False


class UpdatesDiffRequest(BaseModel):
    """Body of ``POST /updates/diff``; unknown keys are ignored."""

    model_config = ConfigDict(extra="ignore")

    offset: int = Field(default=0, ge=0, strict=True)
    limit: int = Field(default=200, ge=1, le=500, strict=True)


class UpdatesDiffResponse(StrictModel):
    ok: Literal[True] = True
    data: UpdatesDiff
