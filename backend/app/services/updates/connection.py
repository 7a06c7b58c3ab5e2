# backend/app/services/updates/connection.py
"""
Live update streams.

Each StreamingConnection belongs to one user and moves through
CONNECTING -> LIVE -> CLOSED. Once both pub/sub subscriptions are attached
the connection is LIVE: it writes a ``ready`` frame, catches up from
``last_delivered_seqno``, then reacts to traffic:

- durable notice  -> re-read the log page by page and write ``update`` frames
- ephemeral event -> forwarded as an ``ephemeral`` frame
- idle timeout    -> ``ping`` heartbeat

Notices carry no envelope data, so a notice that races a catch-up is simply
skipped. When the subscription ends the connection closes and the client is
expected to reconnect with its last seqno.

Frames are the ``{"event", "data", "id"?}`` dicts consumed by
sse-starlette's EventSourceResponse.
"""

from __future__ import annotations

import asyncio
from enum import Enum
import json
import logging
from typing import (
    Any,
    AsyncIterator,
    Awaitable,
    Callable,
    Dict,
    List,
    Optional,
    Protocol,
)

from broadcaster import Broadcast
import ulid

from app.core.broadcast import get_broadcast
from app.core.config import settings
from app.core.exceptions import ConnectionClosed
from app.core.metrics import UPDATES_STREAM_CONNECTIONS
from app.schemas.updates import UpdateEnvelope, UpdatesDiff, epoch_ms
from app.services.updates.channels import durable_channel, ephemeral_channel

logger = logging.getLogger(__name__)

Frame = Dict[str, str]
DiffFetcher = Callable[[str, int, int], Awaitable[UpdatesDiff]]


class ConnectionState(str, Enum):
    CONNECTING = "connecting"
    LIVE = "live"
    CLOSED = "closed"


class ConnectionHandle(Protocol):
    """Transport end of a stream. ``send`` may raise ConnectionClosed."""

    async def send(self, frame: Frame) -> None:
        ...

    async def close(self) -> None:
        ...


class QueueConnectionHandle:
    """Buffers frames for an SSE response generator."""

    def __init__(self, connection_id: Optional[str] = None) -> None:
        self.connection_id = connection_id or str(ulid.ULID())
        self._queue: asyncio.Queue[Optional[Frame]] = asyncio.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def send(self, frame: Frame) -> None:
        if self._closed:
            raise ConnectionClosed(self.connection_id)
        self._queue.put_nowait(frame)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(None)

    async def frames(self) -> AsyncIterator[Frame]:
        """Yield frames until the handle is closed."""
        while True:
            frame = await self._queue.get()
            if frame is None:
                return
            yield frame


# ---------------------------------------------------------------------- frames
def ready_frame(connection_id: str, user_id: str, last_delivered_seqno: int) -> Frame:
    return {
        "event": "ready",
        "data": json.dumps(
            {
                "connectionId": connection_id,
                "userId": user_id,
                "offset": last_delivered_seqno,
            }
        ),
    }


def update_frame(envelope: UpdateEnvelope) -> Frame:
    # ``id`` lets EventSource resend Last-Event-ID on reconnect
    return {
        "event": "update",
        "data": json.dumps(envelope.to_wire()),
        "id": str(envelope.seqno),
    }


def ephemeral_frame(message: str) -> Frame:
    return {"event": "ephemeral", "data": message}


def ping_frame() -> Frame:
    return {"event": "ping", "data": json.dumps({"timestamp": epoch_ms(None)})}


def _notice_seqno(message: Any) -> Optional[int]:
    try:
        seqno = json.loads(message).get("seqno")
    except (TypeError, ValueError, AttributeError):
        return None
    return seqno if isinstance(seqno, int) else None


class StreamingConnection:
    """One live stream for one user."""

    def __init__(
        self,
        *,
        user_id: str,
        organization_id: str,
        handle: ConnectionHandle,
        diff_get: DiffFetcher,
        broadcast_getter: Callable[[], Broadcast] = get_broadcast,
        last_delivered_seqno: int = 0,
        page_size: Optional[int] = None,
        heartbeat_interval: Optional[float] = None,
        on_closed: Optional[Callable[["StreamingConnection"], None]] = None,
    ) -> None:
        self.connection_id = str(ulid.ULID())
        self.user_id = user_id
        self.organization_id = organization_id
        self.handle = handle
        self.last_delivered_seqno = max(0, int(last_delivered_seqno))
        self.page_size = page_size or settings.updates_stream_page_size
        self.heartbeat_interval = heartbeat_interval or settings.updates_heartbeat_interval
        self.state = ConnectionState.CONNECTING

        self._diff_get = diff_get
        self._broadcast_getter = broadcast_getter
        self._on_closed = on_closed
        self._attached = asyncio.Event()
        self._pump: Optional[asyncio.Task[None]] = None
        self._finalized = False

    @property
    def is_live(self) -> bool:
        return self.state is ConnectionState.LIVE

    async def start(self) -> None:
        """Start the pump and return once LIVE (or already CLOSED)."""
        if self._pump is not None or self.state is ConnectionState.CLOSED:
            return
        self._pump = asyncio.create_task(
            self._run(), name=f"updates-stream-{self.connection_id}"
        )
        attached = asyncio.ensure_future(self._attached.wait())
        try:
            await asyncio.wait({self._pump, attached}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            if not attached.done():
                attached.cancel()

    async def close(self) -> None:
        """Transition to CLOSED and release everything. Safe to call repeatedly."""
        if self.state is ConnectionState.CLOSED and self._finalized:
            return
        self.state = ConnectionState.CLOSED

        pump = self._pump
        if pump is not None and not pump.done() and pump is not asyncio.current_task():
            pump.cancel()
            try:
                await pump
            except asyncio.CancelledError:
                pass
        await self._finalize()

    # ---------------------------------------------------------------- internals
    async def _run(self) -> None:
        queue: asyncio.Queue[tuple[str, Any]] = asyncio.Queue()
        try:
            broadcast = self._broadcast_getter()
            async with broadcast.subscribe(
                channel=durable_channel(self.user_id)
            ) as durable_sub, broadcast.subscribe(
                channel=ephemeral_channel(self.user_id)
            ) as ephemeral_sub:
                # Reader tasks decouple the subscribers from heartbeat timing;
                # wait_for() must never cancel a subscriber's __anext__()
                readers = [
                    asyncio.create_task(self._reader(durable_sub, "notice", queue)),
                    asyncio.create_task(self._reader(ephemeral_sub, "ephemeral", queue)),
                ]
                try:
                    if self.state is not ConnectionState.CONNECTING:
                        return
                    self.state = ConnectionState.LIVE
                    self._attached.set()
                    logger.info(
                        "[UPDATES-STREAM] Connection live",
                        extra={
                            "connection_id": self.connection_id,
                            "user_id": self.user_id,
                            "offset": self.last_delivered_seqno,
                        },
                    )
                    await self._send(
                        ready_frame(self.connection_id, self.user_id, self.last_delivered_seqno)
                    )
                    await self._catch_up()
                    await self._pump_events(queue)
                finally:
                    for reader in readers:
                        reader.cancel()
                    await asyncio.gather(*readers, return_exceptions=True)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.error(
                "[UPDATES-STREAM] Stream failed for user %s: %s",
                self.user_id,
                exc,
                exc_info=True,
                extra={"connection_id": self.connection_id, "user_id": self.user_id},
            )
        finally:
            await self._finalize()

    async def _reader(self, subscriber: Any, kind: str, queue: asyncio.Queue) -> None:
        try:
            async for event in subscriber:
                await queue.put((kind, event))
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            await queue.put(("error", exc))
            return
        await queue.put(("done", kind))

    async def _pump_events(self, queue: asyncio.Queue) -> None:
        while self.state is ConnectionState.LIVE:
            try:
                kind, data = await asyncio.wait_for(queue.get(), timeout=self.heartbeat_interval)
            except asyncio.TimeoutError:
                await self._send(ping_frame())
                continue

            if kind == "notice":
                seqno = _notice_seqno(getattr(data, "message", None))
                if seqno is not None and seqno <= self.last_delivered_seqno:
                    continue
                await self._catch_up()
            elif kind == "ephemeral":
                await self._send(ephemeral_frame(str(data.message)))
            elif kind == "error":
                logger.warning(
                    "[UPDATES-STREAM] Subscription error for user %s: %s",
                    self.user_id,
                    data,
                    extra={"connection_id": self.connection_id},
                )
                return
            elif kind == "done":
                logger.info(
                    "[UPDATES-STREAM] %s subscription ended for user %s",
                    data,
                    self.user_id,
                    extra={"connection_id": self.connection_id},
                )
                return

    async def _catch_up(self) -> None:
        """Deliver everything after ``last_delivered_seqno``, checking LIVE between pages."""
        while self.state is ConnectionState.LIVE:
            diff = await self._diff_get(self.user_id, self.last_delivered_seqno, self.page_size)
            for envelope in diff.envelopes:
                if self.state is not ConnectionState.LIVE:
                    return
                if envelope.seqno <= self.last_delivered_seqno:
                    continue
                await self._send(update_frame(envelope))
                self.last_delivered_seqno = envelope.seqno
            if not diff.has_more:
                return

    async def _send(self, frame: Frame) -> None:
        if self.state is ConnectionState.CLOSED:
            return
        try:
            await self.handle.send(frame)
        except ConnectionClosed:
            logger.info(
                "[UPDATES-STREAM] Transport closed for user %s",
                self.user_id,
                extra={"connection_id": self.connection_id},
            )
            self.state = ConnectionState.CLOSED

    async def _finalize(self) -> None:
        if self._finalized:
            return
        self._finalized = True
        self.state = ConnectionState.CLOSED
        try:
            await self.handle.close()
        except Exception as exc:
            logger.warning(
                "[UPDATES-STREAM] Failed to close handle: %s",
                exc,
                extra={"connection_id": self.connection_id},
            )
        if self._on_closed is not None:
            self._on_closed(self)
        logger.info(
            "[UPDATES-STREAM] Connection closed",
            extra={
                "connection_id": self.connection_id,
                "user_id": self.user_id,
                "offset": self.last_delivered_seqno,
            },
        )


class ConnectionManager:
    """Per-user registry of live streams in this process."""

    def __init__(self) -> None:
        self._by_user: Dict[str, Dict[str, StreamingConnection]] = {}

    def register(self, connection: StreamingConnection) -> None:
        self._by_user.setdefault(connection.user_id, {})[connection.connection_id] = connection
        UPDATES_STREAM_CONNECTIONS.inc()

    def discard(self, connection: StreamingConnection) -> None:
        user_connections = self._by_user.get(connection.user_id)
        if not user_connections or connection.connection_id not in user_connections:
            return
        del user_connections[connection.connection_id]
        if not user_connections:
            del self._by_user[connection.user_id]
        UPDATES_STREAM_CONNECTIONS.dec()

    def connections_for(self, user_id: str) -> List[StreamingConnection]:
        return list(self._by_user.get(user_id, {}).values())

    def __len__(self) -> int:
        return sum(len(conns) for conns in self._by_user.values())

    async def close_all(self) -> None:
        connections = [c for conns in self._by_user.values() for c in conns.values()]
        if connections:
            await asyncio.gather(*(c.close() for c in connections), return_exceptions=True)
