# backend/tests/_utils/updates.py
"""Async helpers shared by update-delivery tests."""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable, Dict, List

from broadcaster import Broadcast

from app.core.exceptions import ConnectionClosed

Frame = Dict[str, str]


@asynccontextmanager
async def memory_broadcast() -> AsyncIterator[Broadcast]:
    """Connected in-process broadcaster bound to the running test loop."""
    broadcast = Broadcast("memory://")
    await broadcast.connect()
    try:
        yield broadcast
    finally:
        await broadcast.disconnect()


class RecordingHandle:
    """ConnectionHandle double that records frames."""

    def __init__(self) -> None:
        self.frames: List[Frame] = []
        self.closed = False
        self.close_calls = 0
        self._changed = asyncio.Event()

    async def send(self, frame: Frame) -> None:
        if self.closed:
            raise ConnectionClosed("recording")
        self.frames.append(frame)
        self._changed.set()

    async def close(self) -> None:
        self.close_calls += 1
        self.closed = True
        self._changed.set()

    def events(self, name: str) -> List[Frame]:
        return [frame for frame in self.frames if frame["event"] == name]

    async def wait_for(
        self, predicate: Callable[["RecordingHandle"], bool], timeout: float = 2.0
    ) -> None:
        async def _wait() -> None:
            while not predicate(self):
                self._changed.clear()
                await self._changed.wait()

        await asyncio.wait_for(_wait(), timeout=timeout)
