# backend/app/routes/v1/updates.py
"""
Update delivery endpoints.

    POST /api/org/{orgid}/updates/diff    pull envelopes after an offset
    GET  /api/org/{orgid}/updates/stream  SSE push stream

Clients reconcile the same way whatever their connectivity: diff from the
last known offset, then keep a stream open. The stream itself catches up
from ``Last-Event-ID`` (or ``?offset=``) before going live.
"""

import logging
from typing import AsyncGenerator, Optional

from fastapi import APIRouter, Depends, Query, Request
from sse_starlette.sse import EventSourceResponse

from ...auth import AuthContext, get_auth_context
from ...core.exceptions import InvalidOffset, TransportUnavailable
from ...schemas.updates import UpdatesDiffRequest, UpdatesDiffResponse
from ...services.updates import QueueConnectionHandle, UpdatesService, get_updates_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/org/{orgid}/updates", tags=["updates"])


def _parse_last_event_id(raw: str) -> int:
    value = raw.strip()
    if not value.isdigit():
        raise InvalidOffset(
            "Last-Event-ID must be a non-negative integer seqno",
            details={"last_event_id": raw},
        )
    return int(value)


@router.post(
    "/diff",
    response_model=UpdatesDiffResponse,
    responses={
        400: {"description": "Invalid offset or limit"},
        401: {"description": "Not authenticated"},
        403: {"description": "Token is for another organization"},
        503: {"description": "Update log unavailable"},
    },
)
async def diff_updates(
    body: Optional[UpdatesDiffRequest] = None,
    auth: AuthContext = Depends(get_auth_context),
    service: UpdatesService = Depends(get_updates_service),
) -> UpdatesDiffResponse:
    """Envelopes with seqno greater than ``offset``, ascending, at most ``limit``."""
    request_body = body or UpdatesDiffRequest()
    diff = await service.diff_get(auth.user_id, request_body.offset, request_body.limit)
    return UpdatesDiffResponse(data=diff)


@router.get(
    "/stream",
    responses={
        200: {"description": "SSE stream of ready, update, ephemeral and ping frames"},
        400: {"description": "Invalid Last-Event-ID or offset"},
        401: {"description": "Not authenticated"},
        403: {"description": "Token is for another organization"},
    },
)
async def stream_updates(
    request: Request,
    offset: Optional[int] = Query(default=None, ge=0, description="Last seqno the client holds"),
    auth: AuthContext = Depends(get_auth_context),
    service: UpdatesService = Depends(get_updates_service),
) -> EventSourceResponse:
    # Last-Event-ID is sent automatically by the browser on reconnect
    last_event_id = request.headers.get("Last-Event-ID")
    if last_event_id:
        start_offset = _parse_last_event_id(last_event_id)
        logger.info(
            "[UPDATES-STREAM] Client reconnecting with Last-Event-ID",
            extra={"user_id": auth.user_id, "last_event_id": start_offset},
        )
    else:
        start_offset = offset or 0

    if service.is_stopped:
        raise TransportUnavailable("Updates service is shutting down")

    async def event_generator() -> AsyncGenerator[dict[str, str], None]:
        handle = QueueConnectionHandle()
        unsubscribe = None
        try:
            try:
                unsubscribe = await service.subscribe(
                    auth.user_id, auth.organization_id, handle, start_offset
                )
            except TransportUnavailable:
                # Headers are already sent; end the stream so the client reconnects
                logger.info(
                    "[UPDATES-STREAM] Service stopped before stream attached",
                    extra={"user_id": auth.user_id},
                )
                return
            async for frame in handle.frames():
                yield frame
        finally:
            if unsubscribe is not None:
                await unsubscribe()
            else:
                await handle.close()

    return EventSourceResponse(
        event_generator(),
        headers={
            "Cache-Control": "no-cache, no-store, must-revalidate",
            "X-Accel-Buffering": "no",
            "Connection": "keep-alive",
            "Pragma": "no-cache",
            "Expires": "0",
        },
        media_type="text/event-stream",
    )
