import pytest

from app.core import broadcast as broadcast_module
from app.core.broadcast import (
    connect_broadcast,
    disconnect_broadcast,
    get_broadcast,
    is_broadcast_initialized,
)


@pytest.mark.asyncio
async def test_connect_and_disconnect_memory_transport(monkeypatch):
    monkeypatch.setattr(broadcast_module, "_broadcast", None)

    with pytest.raises(RuntimeError):
        get_broadcast()
    assert is_broadcast_initialized() is False

    connected = await connect_broadcast("memory://")
    assert get_broadcast() is connected
    assert await connect_broadcast("memory://") is connected

    await disconnect_broadcast()
    assert is_broadcast_initialized() is False
    await disconnect_broadcast()
