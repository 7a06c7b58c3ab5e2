# backend/app/services/updates/__init__.py
"""
Real-time update delivery.

Durable updates are appended to a per-user log and announced on
``updates:{user_id}``; ephemeral signals go straight to
``updates-ephemeral:{user_id}``. Clients catch up with diff_get and stay
current through a streaming connection.
"""

from app.services.updates.connection import (
    ConnectionHandle,
    ConnectionManager,
    ConnectionState,
    QueueConnectionHandle,
    StreamingConnection,
)
from app.services.updates.durable_broadcaster import (
    DurableBroadcaster,
    PublishReport,
    RecipientFilter,
)
from app.services.updates.ephemeral_broadcaster import EphemeralBroadcaster
from app.services.updates.log_store import UpdateLogStore
from app.services.updates.service import (
    UpdatesService,
    get_updates_service,
    init_updates_service,
    shutdown_updates_service,
)

__all__ = [
    "ConnectionHandle",
    "ConnectionManager",
    "ConnectionState",
    "DurableBroadcaster",
    "EphemeralBroadcaster",
    "PublishReport",
    "QueueConnectionHandle",
    "RecipientFilter",
    "StreamingConnection",
    "UpdateLogStore",
    "UpdatesService",
    "get_updates_service",
    "init_updates_service",
    "shutdown_updates_service",
]
