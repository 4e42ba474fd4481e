"""Pytest configuration and fixtures."""

from __future__ import annotations

import asyncio
from collections import Counter
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager

import pytest

from sessionmon.client.manager import ConnectionManager
from sessionmon.client.transport import Transport, TransportError
from sessionmon.core.config import MonitorConfig, ReconnectConfig
from sessionmon.core.state import ConnectionState

_END = object()


class FakeStream:
    """In-memory frame queue standing in for an open stream."""

    def __init__(self) -> None:
        self._queue: asyncio.Queue[object] = asyncio.Queue()

    def push(self, raw: str) -> None:
        self._queue.put_nowait(raw)

    def close(self) -> None:
        """End the stream as if the server closed it."""
        self._queue.put_nowait(_END)

    def fail(self, message: str = "Connection reset") -> None:
        """Break the stream with a transport error."""
        self._queue.put_nowait(TransportError(message))

    async def frames(self) -> AsyncIterator[str]:
        while True:
            item = await self._queue.get()
            if item is _END:
                return
            if isinstance(item, Exception):
                raise item
            assert isinstance(item, str)
            yield item


class FakeTransport(Transport):
    """Scripted transport for connection manager tests.

    Servers listed in ``unreachable`` always fail to open; ``fail_next``
    makes the next N opens of a server fail. Every successful open gets
    a fresh FakeStream reachable through ``streams``. A non-zero
    ``close_delay`` keeps each stream open that long after it is closed.
    """

    def __init__(self) -> None:
        self.unreachable: set[str] = set()
        self.streams: dict[str, FakeStream] = {}
        self.open_count: Counter[str] = Counter()
        self.active: Counter[str] = Counter()
        self.max_active: Counter[str] = Counter()
        self._fail_next: Counter[str] = Counter()
        self.close_delay: float = 0.0

    def fail_next(self, server_url: str, count: int = 1) -> None:
        self._fail_next[server_url] += count

    @asynccontextmanager
    async def open(self, server_url: str) -> AsyncIterator[AsyncIterator[str]]:
        self.open_count[server_url] += 1
        await asyncio.sleep(0)

        if server_url in self.unreachable:
            raise TransportError("Connection refused")
        if self._fail_next[server_url] > 0:
            self._fail_next[server_url] -= 1
            raise TransportError("Connection refused")

        stream = FakeStream()
        self.streams[server_url] = stream
        self.active[server_url] += 1
        self.max_active[server_url] = max(self.max_active[server_url], self.active[server_url])
        try:
            yield stream.frames()
        finally:
            if self.close_delay:
                await asyncio.sleep(self.close_delay)
            self.active[server_url] -= 1


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Poll until predicate is true or fail the test."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("Condition not met within timeout")
        await asyncio.sleep(0.005)


class StateRecorder:
    """Collects connection state snapshots."""

    def __init__(self) -> None:
        self.states: list[ConnectionState] = []

    def __call__(self, state: ConnectionState) -> None:
        self.states.append(state)

    def statuses(self, server_url: str) -> list[str]:
        return [s.status.value for s in self.states if s.server_url == server_url]


@pytest.fixture
def fake_transport() -> FakeTransport:
    """Create a scripted in-memory transport."""
    return FakeTransport()


@pytest.fixture
def fast_config() -> MonitorConfig:
    """Create configuration with short backoff and three attempts."""
    return MonitorConfig(
        reconnect=ReconnectConfig(base_delay=0.01, max_delay=0.04, max_attempts=3),
    )


@pytest.fixture
async def manager(
    fast_config: MonitorConfig, fake_transport: FakeTransport
) -> AsyncIterator[ConnectionManager]:
    """Create a connection manager backed by the fake transport."""
    mgr = ConnectionManager(fast_config, transport=fake_transport)

    yield mgr

    await mgr.disconnect_all()
