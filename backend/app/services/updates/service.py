# backend/app/services/updates/service.py
"""
Updates service: the contract the rest of the backend uses for real-time delivery.

    publish_to_users            durable, ordered, persisted per recipient
    publish_ephemeral_to_users  best-effort, never persisted
    diff_get                    pull / catch-up from an offset
    subscribe                   push stream for one connection
"""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Dict, Iterable, Optional

from broadcaster import Broadcast

from app.core.broadcast import get_broadcast
from app.core.config import settings
from app.core.exceptions import InvalidOffset, TransportUnavailable
from app.schemas.updates import UpdatesDiff
from app.services.updates.connection import (
    ConnectionHandle,
    ConnectionManager,
    StreamingConnection,
)
from app.services.updates.durable_broadcaster import (
    DurableBroadcaster,
    PublishReport,
    RecipientFilter,
)
from app.services.updates.ephemeral_broadcaster import EphemeralBroadcaster
from app.services.updates.log_store import UpdateLogStore

logger = logging.getLogger(__name__)

Unsubscribe = Callable[[], Awaitable[None]]


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


class UpdatesService:
    def __init__(
        self,
        store: Optional[UpdateLogStore] = None,
        *,
        broadcast_getter: Callable[[], Broadcast] = get_broadcast,
        recipient_filter: Optional[RecipientFilter] = None,
        stream_page_size: Optional[int] = None,
        heartbeat_interval: Optional[float] = None,
    ) -> None:
        self.store = store or UpdateLogStore()
        self.connections = ConnectionManager()
        self._broadcast_getter = broadcast_getter
        self._durable = DurableBroadcaster(
            self.store,
            broadcast_getter=broadcast_getter,
            recipient_filter=recipient_filter,
        )
        self._ephemeral = EphemeralBroadcaster(broadcast_getter=broadcast_getter)
        self._stream_page_size = stream_page_size
        self._heartbeat_interval = heartbeat_interval
        self._stopped = False

    @property
    def is_stopped(self) -> bool:
        return self._stopped

    async def publish_to_users(
        self, user_ids: Iterable[str], event_type: str, payload: Dict[str, Any]
    ) -> PublishReport:
        return await self._durable.publish_to_users(user_ids, event_type, payload)

    async def publish_ephemeral_to_users(
        self, user_ids: Iterable[str], event_type: str, payload: Dict[str, Any]
    ) -> int:
        return await self._ephemeral.publish_ephemeral_to_users(user_ids, event_type, payload)

    async def diff_get(
        self, user_id: str, offset: Any, limit: Any = None
    ) -> UpdatesDiff:
        """
        Envelopes after ``offset`` for ``user_id``.

        Raises:
            InvalidOffset: offset is negative or not an integer, or limit is
                outside 1..max. Nothing is read from the store in that case.
            StoreUnavailable: the log could not be read.
        """
        if limit is None:
            limit = settings.updates_diff_default_limit
        if not _is_int(offset) or offset < 0:
            raise InvalidOffset(
                "offset must be a non-negative integer", details={"offset": offset}
            )
        max_limit = settings.updates_diff_max_limit
        if not _is_int(limit) or not 1 <= limit <= max_limit:
            raise InvalidOffset(
                f"limit must be an integer between 1 and {max_limit}",
                details={"limit": limit},
            )
        return await self.store.diff_get(user_id, offset, limit)

    async def subscribe(
        self,
        user_id: str,
        organization_id: str,
        handle: ConnectionHandle,
        last_delivered_seqno: int = 0,
    ) -> Unsubscribe:
        """
        Attach a live stream for ``user_id`` and return its teardown callable.

        The returned coroutine function is idempotent.
        """
        if self._stopped:
            raise TransportUnavailable("Updates service is stopped")
        if not _is_int(last_delivered_seqno) or last_delivered_seqno < 0:
            raise InvalidOffset(
                "offset must be a non-negative integer",
                details={"offset": last_delivered_seqno},
            )

        connection = StreamingConnection(
            user_id=user_id,
            organization_id=organization_id,
            handle=handle,
            diff_get=self.store.diff_get,
            broadcast_getter=self._broadcast_getter,
            last_delivered_seqno=last_delivered_seqno,
            page_size=self._stream_page_size,
            heartbeat_interval=self._heartbeat_interval,
            on_closed=self.connections.discard,
        )
        self.connections.register(connection)
        try:
            await connection.start()
        except BaseException:
            # Caller went away while the subscriptions were attaching
            await connection.close()
            raise
        return connection.close

    async def stop(self) -> None:
        """Close every live stream. Idempotent."""
        if self._stopped:
            return
        self._stopped = True
        count = len(self.connections)
        await self.connections.close_all()
        logger.info("[UPDATES-STREAM] Updates service stopped, closed %d stream(s)", count)


_updates_service: Optional[UpdatesService] = None


def init_updates_service(**kwargs: Any) -> UpdatesService:
    """Create the process-wide service. Call during startup (lifespan)."""
    global _updates_service

    if _updates_service is None or _updates_service.is_stopped:
        _updates_service = UpdatesService(**kwargs)
    return _updates_service


def get_updates_service() -> UpdatesService:
    """
    FastAPI dependency and accessor for the process-wide service.

    Raises:
        RuntimeError: If init_updates_service() has not been called
    """
    if _updates_service is None:
        raise RuntimeError("Updates service not initialized. Call init_updates_service() during startup.")
    return _updates_service


async def shutdown_updates_service() -> None:
    global _updates_service

    if _updates_service is not None:
        service, _updates_service = _updates_service, None
        await service.stop()
