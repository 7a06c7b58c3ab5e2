# backend/tests/integration/test_updates_stream_flow.py
"""End-to-end client reconciliation: diff, stream, disconnect, resume."""

import asyncio
import json

import pytest
from starlette.requests import Request

from app.auth import AuthContext
from app.routes.v1.updates import stream_updates
from app.services.updates.service import UpdatesService
from tests._utils.updates import memory_broadcast


async def _empty_receive() -> dict[str, object]:
    return {"type": "http.request", "body": b"", "more_body": False}


def _build_request(last_event_id: str | None = None) -> Request:
    headers: list[tuple[bytes, bytes]] = []
    if last_event_id is not None:
        headers.append((b"last-event-id", last_event_id.encode()))

    scope = {
        "type": "http",
        "http_version": "1.1",
        "method": "GET",
        "scheme": "http",
        "path": "/api/org/org-1/updates/stream",
        "raw_path": b"/api/org/org-1/updates/stream",
        "headers": headers,
        "query_string": b"",
        "client": ("testclient", 1234),
        "server": ("testserver", 80),
    }
    return Request(scope, _empty_receive)


async def _next_frame(frames, timeout: float = 2.0) -> dict:
    return await asyncio.wait_for(anext(frames), timeout=timeout)


@pytest.mark.asyncio
async def test_client_resumes_without_gaps_or_duplicates(store):
    auth = AuthContext(user_id="u1", organization_id="org-1")

    async with memory_broadcast() as broadcast:
        service = UpdatesService(store, broadcast_getter=lambda: broadcast)
        await service.publish_to_users(["u1"], "message.created", {"n": 1})

        # First session: pull, then stream
        diff = await service.diff_get("u1", 0)
        assert [env.seqno for env in diff.envelopes] == [1]

        response = await stream_updates(
            _build_request(), offset=diff.next_offset, auth=auth, service=service
        )
        frames = response.body_iterator
        assert (await _next_frame(frames))["event"] == "ready"

        await service.publish_to_users(["u1"], "message.created", {"n": 2})
        pushed = await _next_frame(frames)
        assert pushed["event"] == "update"
        assert pushed["id"] == "2"
        assert json.loads(pushed["data"])["payload"] == {"n": 2}

        await frames.aclose()
        assert len(service.connections) == 0

        # Published while the client was away
        await service.publish_to_users(["u1"], "message.created", {"n": 3})
        await service.publish_to_users(["u1"], "message.created", {"n": 4})

        response = await stream_updates(
            _build_request(last_event_id=pushed["id"]), offset=None, auth=auth, service=service
        )
        frames = response.body_iterator
        ready = await _next_frame(frames)
        assert json.loads(ready["data"])["offset"] == 2

        resumed = [await _next_frame(frames), await _next_frame(frames)]
        assert [frame["id"] for frame in resumed] == ["3", "4"]

        await frames.aclose()
        await service.stop()


@pytest.mark.asyncio
async def test_typing_reaches_stream_but_not_log(store):
    auth = AuthContext(user_id="u1", organization_id="org-1")

    async with memory_broadcast() as broadcast:
        service = UpdatesService(store, broadcast_getter=lambda: broadcast)
        response = await stream_updates(_build_request(), offset=None, auth=auth, service=service)
        frames = response.body_iterator
        assert (await _next_frame(frames))["event"] == "ready"

        await service.publish_ephemeral_to_users(["u1"], "typing", {"channelId": "c1"})
        frame = await _next_frame(frames)

        assert frame["event"] == "ephemeral"
        assert json.loads(frame["data"])["payload"] == {"channelId": "c1"}
        assert (await service.diff_get("u1", 0, 500)).envelopes == []

        await frames.aclose()


@pytest.mark.asyncio
async def test_stream_ends_cleanly_when_service_stops_before_attach(store):
    auth = AuthContext(user_id="u1", organization_id="org-1")

    async with memory_broadcast() as broadcast:
        service = UpdatesService(store, broadcast_getter=lambda: broadcast)
        response = await stream_updates(_build_request(), offset=0, auth=auth, service=service)

        # Shutdown lands after the response is built but before the generator subscribes
        await service.stop()

        frames = [frame async for frame in response.body_iterator]

        assert frames == []
        assert len(service.connections) == 0
