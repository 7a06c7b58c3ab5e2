# backend/app/services/updates/durable_broadcaster.py
"""
Durable fan-out: one persisted envelope per recipient, then a wake-up notice.

The notice on ``updates:{user_id}`` carries only ``{userId, seqno}``; live
streams re-read the log themselves. Recipients are processed concurrently and
isolated from each other, so one failed append never blocks the rest.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
import json
import logging
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Tuple

from broadcaster import Broadcast

from app.core.broadcast import get_broadcast
from app.core.exceptions import FanoutIncomplete, StoreUnavailable, TransportUnavailable
from app.core.metrics import (
    UPDATES_NOTICES_FAILED_TOTAL,
    UPDATES_NOTICES_PUBLISHED_TOTAL,
    UPDATES_RECIPIENTS_SKIPPED_TOTAL,
)
from app.schemas.updates import UpdateNotice
from app.services.updates.channels import durable_channel, unique_user_ids
from app.services.updates.log_store import UpdateLogStore

logger = logging.getLogger(__name__)

# (user_id, event_type, payload) -> deliver?
RecipientFilter = Callable[[str, str, Dict[str, Any]], Awaitable[bool]]

_DELIVERED = "delivered"
_FAILED = "failed"
_SKIPPED = "skipped"


@dataclass
class PublishReport:
    """Per-recipient outcome of a durable publish."""

    event_type: str
    delivered: Dict[str, int] = field(default_factory=dict)
    failed: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    # Persisted, but the wake-up notice could not be published
    unnotified: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed

    def raise_for_failures(self) -> None:
        if self.failed:
            raise FanoutIncomplete(self.event_type, self.failed)


class DurableBroadcaster:
    def __init__(
        self,
        store: UpdateLogStore,
        *,
        broadcast_getter: Callable[[], Broadcast] = get_broadcast,
        recipient_filter: Optional[RecipientFilter] = None,
    ) -> None:
        self._store = store
        self._broadcast_getter = broadcast_getter
        self._recipient_filter = recipient_filter

    async def publish_to_users(
        self, user_ids: Iterable[str], event_type: str, payload: Dict[str, Any]
    ) -> PublishReport:
        recipients = unique_user_ids(user_ids)
        report = PublishReport(event_type=event_type)
        if not recipients:
            return report

        outcomes = await asyncio.gather(
            *(self._deliver(user_id, event_type, payload) for user_id in recipients)
        )
        for user_id, (outcome, seqno, notified) in zip(recipients, outcomes):
            if outcome == _DELIVERED and seqno is not None:
                report.delivered[user_id] = seqno
                if not notified:
                    report.unnotified.append(user_id)
            elif outcome == _SKIPPED:
                report.skipped.append(user_id)
            else:
                report.failed.append(user_id)

        if report.failed:
            logger.warning(
                "[UPDATES-PUBLISH] Fan-out incomplete for %s: %d of %d recipients failed",
                event_type,
                len(report.failed),
                len(recipients),
                extra={"event_type": event_type, "failed_user_ids": report.failed},
            )
        return report

    async def _deliver(
        self, user_id: str, event_type: str, payload: Dict[str, Any]
    ) -> Tuple[str, Optional[int], bool]:
        if not await self._is_deliverable(user_id, event_type, payload):
            UPDATES_RECIPIENTS_SKIPPED_TOTAL.labels(event_type=event_type).inc()
            return _SKIPPED, None, False

        try:
            envelope = await self._store.append(user_id, event_type, payload)
        except StoreUnavailable as exc:
            logger.error(
                "[UPDATES-PUBLISH] Append failed for user %s: %s",
                user_id,
                exc.message,
                extra={"user_id": user_id, "event_type": event_type, "code": exc.code},
            )
            return _FAILED, None, False
        except Exception:
            logger.exception(
                "[UPDATES-PUBLISH] Unexpected append error for user %s",
                user_id,
                extra={"user_id": user_id, "event_type": event_type},
            )
            return _FAILED, None, False

        notified = await self._notify(user_id, envelope.seqno)
        return _DELIVERED, envelope.seqno, notified

    async def _is_deliverable(
        self, user_id: str, event_type: str, payload: Dict[str, Any]
    ) -> bool:
        if self._recipient_filter is None:
            return True
        try:
            return bool(await self._recipient_filter(user_id, event_type, payload))
        except Exception as exc:
            # Fail open: an envelope too many beats a missing one
            logger.warning(
                "[UPDATES-PUBLISH] Recipient filter failed for user %s: %s",
                user_id,
                exc,
                extra={"user_id": user_id, "event_type": event_type},
            )
            return True

    async def _notify(self, user_id: str, seqno: int) -> bool:
        """Publish the wake-up notice. Failures are logged; catch-up heals them."""
        notice = UpdateNotice(user_id=user_id, seqno=seqno)
        channel = durable_channel(user_id)
        try:
            broadcast = self._broadcast_getter()
            await broadcast.publish(channel=channel, message=json.dumps(notice.to_wire()))
        except Exception as exc:
            error = TransportUnavailable(
                f"Failed to publish notice on {channel}",
                details={"user_id": user_id, "seqno": seqno, "error": str(exc)},
            )
            UPDATES_NOTICES_FAILED_TOTAL.labels(path="durable").inc()
            logger.warning(
                "[UPDATES-PUBLISH] %s: %s",
                error.message,
                exc,
                extra={"user_id": user_id, "seqno": seqno, "code": error.code},
            )
            return False

        UPDATES_NOTICES_PUBLISHED_TOTAL.labels(path="durable").inc()
        logger.debug(
            "[UPDATES-PUBLISH] Notice published",
            extra={"user_id": user_id, "seqno": seqno},
        )
        return True
