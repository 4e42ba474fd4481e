"""Connection manager for live session event streams.

This module provides the ConnectionManager class that keeps one
auto-reconnecting stream per server, validates every inbound frame and
hands session events to subscribers.

Architecture:
    ┌──────────────────────────────────────────────┐
    │              ConnectionManager               │
    ├──────────────────────────────────────────────┤
    │  ┌──────────────┐        ┌────────────────┐  │
    │  │ worker task  │ ─────▶ │ ConnectionStore│  │
    │  │ (per server) │        │ + backoff      │  │
    │  └──────────────┘        └────────────────┘  │
    │     │ frames                    │ snapshots  │
    │     ▼                           ▼            │
    │  parse_sse_data ──▶ event subscribers        │
    │                     state subscribers        │
    └──────────────────────────────────────────────┘

Each worker task is both the server's only stream and its only pending
reconnect timer: it opens the transport, reads until the stream fails,
sleeps out the backoff delay and tries again. Cancelling the task
therefore cancels the timer and closes the transport together.
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Callable
from types import TracebackType
from typing import Any, NamedTuple

import structlog

from sessionmon.client.transport import AutoTransport, Transport, TransportError
from sessionmon.core.backoff import ReconnectPolicy
from sessionmon.core.config import MonitorConfig
from sessionmon.core.state import (
    ConnectionState,
    ConnectionStatus,
    ConnectionStore,
    ErrorCode,
    StateListener,
)
from sessionmon.protocol.events import SessionEvent
from sessionmon.protocol.frames import parse_sse_data

log = structlog.get_logger()


EventListener = Callable[[str, SessionEvent], None]

# States that already have a live worker task
_ACTIVE_STATES = frozenset(
    {ConnectionStatus.CONNECTING, ConnectionStatus.CONNECTED, ConnectionStatus.RECONNECTING}
)


class ServerEvent(NamedTuple):
    """Session event tagged with the server it arrived from."""

    server_url: str
    event: SessionEvent


class Subscription:
    """Handle for a registered listener.

    Unsubscribing is idempotent. Usable as a context manager that
    unsubscribes on exit.
    """

    def __init__(
        self,
        registry: list[Subscription],
        callback: Callable[..., None],
        server_url: str | None = None,
    ) -> None:
        self._registry = registry
        self._callback = callback
        self.server_url = server_url
        registry.append(self)

    @property
    def active(self) -> bool:
        """Whether the listener still receives notifications."""
        return self in self._registry

    def matches(self, server_url: str) -> bool:
        return self.server_url is None or self.server_url == server_url

    def unsubscribe(self) -> None:
        """Stop receiving notifications."""
        with contextlib.suppress(ValueError):
            self._registry.remove(self)

    def __call__(self, *args: Any) -> None:
        self._callback(*args)

    def __enter__(self) -> Subscription:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.unsubscribe()


class EventStream(Subscription):
    """Subscription consumed as an async iterator of ServerEvent.

    Iteration ends once the stream is closed and every queued event has
    been consumed.

    Example:
        async with manager.events("http://127.0.0.1:4096") as stream:
            async for server_url, event in stream:
                print(server_url, event.type)
    """

    _CLOSED = object()

    def __init__(self, registry: list[Subscription], server_url: str | None = None) -> None:
        self._queue: asyncio.Queue[Any] = asyncio.Queue()
        super().__init__(registry, self._enqueue, server_url)

    def _enqueue(self, server_url: str, event: SessionEvent) -> None:
        self._queue.put_nowait(ServerEvent(server_url, event))

    def unsubscribe(self) -> None:
        if self.active:
            super().unsubscribe()
            self._queue.put_nowait(self._CLOSED)

    async def aclose(self) -> None:
        """Close the stream; pending events can still be drained."""
        self.unsubscribe()

    def __aiter__(self) -> EventStream:
        return self

    async def __anext__(self) -> ServerEvent:
        item = await self._queue.get()
        if item is self._CLOSED:
            raise StopAsyncIteration
        return item

    async def __aenter__(self) -> EventStream:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()


class ConnectionManager:
    """Keeps live event streams to a set of servers.

    Connection results are observed through get_connection_state(),
    get_all_connection_states() or state subscriptions; session events
    through subscribe() or events().

    Example:
        async with ConnectionManager(config) as manager:
            manager.subscribe(lambda url, event: print(url, event))
            manager.connect("http://127.0.0.1:4096")
            ...
    """

    def __init__(
        self,
        config: MonitorConfig | None = None,
        transport: Transport | None = None,
        policy: ReconnectPolicy | None = None,
    ) -> None:
        """Initialize the manager.

        Args:
            config: Monitor configuration (reconnect and transport settings)
            transport: Stream transport (default: chosen by URL scheme)
            policy: Reconnect backoff policy (default: from config)
        """
        self._config = config or MonitorConfig()
        self._transport = transport or AutoTransport(self._config.transport)
        self._store = ConnectionStore(
            policy or ReconnectPolicy.from_config(self._config.reconnect),
            max_reconnect_attempts=self._config.reconnect.max_attempts,
            on_change=self._notify_state,
        )

        self._tasks: dict[str, asyncio.Task[None]] = {}
        # Cancelled workers whose transport may still be closing
        self._closing: dict[str, set[asyncio.Task[None]]] = {}
        self._event_subscriptions: list[Subscription] = []
        self._state_subscriptions: list[Subscription] = []

    @property
    def config(self) -> MonitorConfig:
        return self._config

    # Public API

    def connect(self, server_url: str) -> ConnectionState:
        """Start streaming from a server.

        Returns immediately; the stream is opened by a background task.
        A server that is already connecting, connected or waiting to
        reconnect is left alone. A failed or disconnected server starts
        over with a fresh attempt count. If an earlier stream to the same
        server is still closing, the new one opens after it has closed.

        Args:
            server_url: Server base URL

        Returns:
            Snapshot of the server's state after the call

        Raises:
            RuntimeError: If called without a running event loop
        """
        current = self._store.snapshot(server_url)
        if current is not None and current.status in _ACTIVE_STATES:
            return current

        loop = asyncio.get_running_loop()
        state = self._store.begin_connect(server_url)

        closing = set(self._closing.get(server_url, ()))
        task = loop.create_task(
            self._run(server_url, closing), name=f"sessionmon-stream:{server_url}"
        )
        task.add_done_callback(lambda t: self._forget_task(server_url, t))
        self._tasks[server_url] = task

        log.info("Connecting", server=server_url)
        return state

    async def disconnect(self, server_url: str) -> None:
        """Stop streaming from a server.

        The pending reconnect (if any) is cancelled and the status set to
        disconnected before this coroutine first yields; it returns once
        the transport is closed. Unknown servers are ignored.
        """
        task = self._tasks.pop(server_url, None)
        if task is not None:
            self._retire(server_url, task)

        if self._store.mark_disconnected(server_url) is not None:
            log.info("Disconnected", server=server_url)

        if task is not None:
            await asyncio.wait([task])

    async def disconnect_all(self) -> None:
        """Stop streaming from every server and forget all state.

        Every worker is cancelled and the state cleared before this
        coroutine first yields; it returns once every transport is closed.
        No reconnect can fire after it returns. A server connected again
        while it runs gets a fresh entry.
        """
        tasks = list(self._tasks.items())
        self._tasks.clear()
        for server_url, task in tasks:
            self._retire(server_url, task)

        for server_url in self._store:
            self._store.mark_disconnected(server_url)
        self._store.clear()

        if tasks:
            await asyncio.wait([task for _, task in tasks])

        log.info("Disconnected from all servers", count=len(tasks))

    def get_connection_state(self, server_url: str) -> ConnectionState | None:
        """Get a snapshot of a server's state, or None if never connected."""
        return self._store.snapshot(server_url)

    def get_all_connection_states(self) -> dict[str, ConnectionState]:
        """Get snapshots of every tracked server keyed by URL."""
        return self._store.snapshot_all()

    def is_connected(self, server_url: str) -> bool:
        """Whether the server's stream is currently open."""
        state = self._store.snapshot(server_url)
        return state is not None and state.status == ConnectionStatus.CONNECTED

    def subscribe(self, callback: EventListener, server_url: str | None = None) -> Subscription:
        """Register a listener for session events.

        Args:
            callback: Called with (server_url, event) for every valid event
            server_url: Only deliver events from this server (default: all)

        Returns:
            Subscription handle
        """
        return Subscription(self._event_subscriptions, callback, server_url)

    def events(self, server_url: str | None = None) -> EventStream:
        """Get an async iterator over session events.

        Args:
            server_url: Only deliver events from this server (default: all)
        """
        return EventStream(self._event_subscriptions, server_url)

    def subscribe_state(self, callback: StateListener) -> Subscription:
        """Register a listener for connection state transitions."""
        return Subscription(self._state_subscriptions, callback)

    async def __aenter__(self) -> ConnectionManager:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.disconnect_all()

    # Stream worker

    async def _run(self, server_url: str, closing: set[asyncio.Task[None]]) -> None:
        """Open, read and reconnect until failed or cancelled.

        Args:
            server_url: Server to stream from
            closing: Earlier workers for this server that must finish first
        """
        if closing:
            await asyncio.wait(closing)
            log.debug("Previous stream closed", server=server_url)

        while True:
            message, code = await self._stream_once(server_url)
            if self._tasks.get(server_url) is not asyncio.current_task():
                # Retired while closing; the entry belongs to someone else now
                return

            delay = self._store.record_failure(server_url, message, code)
            if delay is None:
                log.error("Giving up on server", server=server_url, error=message)
                return

            state = self._store.snapshot(server_url)
            log.warning(
                "Stream failed, reconnecting",
                server=server_url,
                error=message,
                delay=round(delay, 3),
                attempt=state.reconnect_attempts if state else None,
            )
            await asyncio.sleep(delay)
            self._store.begin_connect(server_url)

    async def _stream_once(self, server_url: str) -> tuple[str, ErrorCode]:
        """Run one stream until it ends, returning why it ended."""
        try:
            async with self._transport.open(server_url) as frames:
                self._store.mark_connected(server_url)
                log.info("Connected", server=server_url)
                async for raw in frames:
                    self._dispatch(server_url, raw)
        except TransportError as e:
            return str(e), e.code
        except Exception as e:
            log.error("Unexpected stream error", server=server_url, error=str(e))
            return f"{type(e).__name__}: {e}", ErrorCode.NETWORK_ERROR

        return "Stream closed by server", ErrorCode.NETWORK_ERROR

    def _retire(self, server_url: str, task: asyncio.Task[None]) -> None:
        task.cancel()
        if not task.done():
            self._closing.setdefault(server_url, set()).add(task)

    def _forget_task(self, server_url: str, task: asyncio.Task[None]) -> None:
        if self._tasks.get(server_url) is task:
            del self._tasks[server_url]

        closing = self._closing.get(server_url)
        if closing is not None:
            closing.discard(task)
            if not closing:
                del self._closing[server_url]

    # Dispatch

    def _dispatch(self, server_url: str, raw: str) -> None:
        event = parse_sse_data(raw)
        if event is None:
            log.debug("Dropped malformed frame", server=server_url, size=len(raw))
            return

        if self._config.debug:
            log.debug(
                "Received event",
                server=server_url,
                type=event.type.value,
                session=event.session_id,
            )

        for subscription in list(self._event_subscriptions):
            if subscription.matches(server_url):
                try:
                    subscription(server_url, event)
                except Exception as e:
                    log.warning("Event listener failed", server=server_url, error=str(e))

    def _notify_state(self, state: ConnectionState) -> None:
        for subscription in list(self._state_subscriptions):
            try:
                subscription(state)
            except Exception as e:
                log.warning("State listener failed", server=state.server_url, error=str(e))
