# backend/app/core/broadcast.py
"""
Shared pub/sub transport for update notices.

One Broadcaster instance per worker process. Broadcaster keeps a single
backend connection (Redis in production, in-process memory in tests) and
fans each channel out to per-subscriber asyncio queues, so N live update
streams share one connection instead of opening N.
"""
import logging
from typing import Optional

from broadcaster import Broadcast

from .config import settings

logger = logging.getLogger(__name__)

_broadcast: Optional[Broadcast] = None


def get_broadcast() -> Broadcast:
    """
    Get the shared broadcast instance.

    Raises:
        RuntimeError: If broadcast is not initialized (call connect_broadcast first)
    """
    if _broadcast is None:
        raise RuntimeError("Broadcast not initialized. Call connect_broadcast() during startup.")
    return _broadcast


def is_broadcast_initialized() -> bool:
    """Used by the health check to report pub/sub readiness."""
    return _broadcast is not None


async def connect_broadcast(url: Optional[str] = None) -> Broadcast:
    """
    Connect the process-wide broadcaster.

    Call during application startup (in the lifespan manager). Calling it
    again while connected returns the existing instance.
    """
    global _broadcast

    if _broadcast is not None:
        return _broadcast

    backend_url = url or settings.resolved_broadcast_url
    broadcast = Broadcast(backend_url)
    await broadcast.connect()
    _broadcast = broadcast
    logger.info("[BROADCAST] Connected pub/sub transport: %s", backend_url.split("@")[-1])
    return broadcast


async def disconnect_broadcast() -> None:
    """
    Disconnect the shared transport.

    Call during application shutdown.
    """
    global _broadcast

    if _broadcast is not None:
        broadcast, _broadcast = _broadcast, None
        await broadcast.disconnect()
        logger.info("[BROADCAST] Disconnected pub/sub transport")
