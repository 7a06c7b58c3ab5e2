# backend/app/services/updates/ephemeral_broadcaster.py
"""Fire-and-forget fan-out for signals that are worthless once stale (typing)."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Dict, Iterable

from broadcaster import Broadcast

from app.core.broadcast import get_broadcast
from app.core.metrics import UPDATES_NOTICES_FAILED_TOTAL, UPDATES_NOTICES_PUBLISHED_TOTAL
from app.schemas.updates import EphemeralEnvelope
from app.services.updates.channels import ephemeral_channel, unique_user_ids

logger = logging.getLogger(__name__)


class EphemeralBroadcaster:
    def __init__(self, *, broadcast_getter: Callable[[], Broadcast] = get_broadcast) -> None:
        self._broadcast_getter = broadcast_getter

    async def publish_ephemeral_to_users(
        self, user_ids: Iterable[str], event_type: str, payload: Dict[str, Any]
    ) -> int:
        """
        Publish an unpersisted envelope to each recipient's ephemeral channel.

        Nothing is stored and no seqno is assigned; if nobody is subscribed the
        signal is lost. Returns the number of successful publishes.
        """
        recipients = unique_user_ids(user_ids)
        if not recipients:
            return 0
        results = await asyncio.gather(
            *(self._publish_one(user_id, event_type, payload) for user_id in recipients)
        )
        return sum(1 for sent in results if sent)

    async def _publish_one(self, user_id: str, event_type: str, payload: Dict[str, Any]) -> bool:
        envelope = EphemeralEnvelope(user_id=user_id, event_type=event_type, payload=payload)
        channel = ephemeral_channel(user_id)
        try:
            broadcast = self._broadcast_getter()
            await broadcast.publish(channel=channel, message=envelope.model_dump_json(by_alias=True))
        except Exception as exc:
            UPDATES_NOTICES_FAILED_TOTAL.labels(path="ephemeral").inc()
            logger.warning(
                "[UPDATES-PUBLISH] Ephemeral publish to %s failed: %s",
                channel,
                exc,
                extra={"user_id": user_id, "event_type": event_type},
            )
            return False
        UPDATES_NOTICES_PUBLISHED_TOTAL.labels(path="ephemeral").inc()
        return True
