import asyncio
import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from app.services.updates.durable_broadcaster import DurableBroadcaster
from app.services.updates.ephemeral_broadcaster import EphemeralBroadcaster
from tests._utils.updates import memory_broadcast


@pytest.mark.asyncio
async def test_ephemeral_publish_reaches_subscriber():
    async with memory_broadcast() as broadcast:
        async with broadcast.subscribe(channel="updates-ephemeral:u1") as subscriber:
            sent = await EphemeralBroadcaster(
                broadcast_getter=lambda: broadcast
            ).publish_ephemeral_to_users(["u1", "u1"], "typing", {"channelId": "c1"})

            event = await asyncio.wait_for(subscriber.get(), timeout=2.0)

    assert sent == 1
    body = json.loads(event.message)
    assert body["userId"] == "u1"
    assert body["eventType"] == "typing"
    assert body["payload"] == {"channelId": "c1"}
    assert "seqno" not in body
    assert isinstance(body["createdAt"], int)


@pytest.mark.asyncio
async def test_ephemeral_is_never_persisted(store):
    async with memory_broadcast() as broadcast:
        await DurableBroadcaster(store, broadcast_getter=lambda: broadcast).publish_to_users(
            ["u1"], "message.created", {"text": "durable"}
        )
        await EphemeralBroadcaster(broadcast_getter=lambda: broadcast).publish_ephemeral_to_users(
            ["u1"], "typing", {"marker": "ephemeral"}
        )

    diff = await store.diff_get("u1", 0, 500)
    assert [env.payload for env in diff.envelopes] == [{"text": "durable"}]


@pytest.mark.asyncio
async def test_ephemeral_errors_are_swallowed():
    broadcast = MagicMock()
    broadcast.publish = AsyncMock(side_effect=[ConnectionError("down"), None])

    sent = await EphemeralBroadcaster(broadcast_getter=lambda: broadcast).publish_ephemeral_to_users(
        ["u1", "u2"], "typing", {}
    )

    assert sent == 1
    assert broadcast.publish.await_count == 2


@pytest.mark.asyncio
async def test_ephemeral_without_recipients_publishes_nothing():
    getter = MagicMock()

    sent = await EphemeralBroadcaster(broadcast_getter=getter).publish_ephemeral_to_users(
        [], "typing", {}
    )

    assert sent == 0
    getter.assert_not_called()
