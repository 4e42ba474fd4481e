"""Stream transports delivering raw text frames from a server.

A transport opens one long-lived stream to a server and yields the data
payload of every frame as a string. Framing conventions (SSE event names,
WebSocket message types) stay inside the transport; the connection
manager only ever sees frame payloads.

Transports:
    SSETransport: ``GET {server_url}{events_path}`` as server-sent events
    WebSocketTransport: ``ws://`` / ``wss://`` text messages
    AutoTransport: picks one of the above by URL scheme
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from urllib.parse import urlsplit

import httpx
import structlog
import websockets
from httpx_sse import EventSource, aconnect_sse
from websockets.asyncio.client import ClientConnection, connect

from sessionmon.core.config import TransportConfig
from sessionmon.core.state import ErrorCode

log = structlog.get_logger()


class TransportError(Exception):
    """Stream failed to open or broke while reading.

    Attributes:
        code: Error category recorded in the connection state
    """

    def __init__(self, message: str, code: ErrorCode = ErrorCode.NETWORK_ERROR) -> None:
        super().__init__(message)
        self.code = code


def _describe(exc: BaseException) -> str:
    text = str(exc)
    return f"{type(exc).__name__}: {text}" if text else type(exc).__name__


class Transport(ABC):
    """Opens event streams to servers."""

    @abstractmethod
    def open(self, server_url: str) -> AbstractAsyncContextManager[AsyncIterator[str]]:
        """Open a stream to a server.

        Entering the returned context completes once the stream is
        established; it yields an async iterator of frame payloads that
        ends when the server closes the stream. Leaving the context
        closes the stream.

        Raises:
            TransportError: If the stream cannot be opened or fails while reading
        """


class SSETransport(Transport):
    """Server-sent events over HTTP using httpx.

    Example:
        transport = SSETransport(TransportConfig(events_path="/api/events"))
        async with transport.open("http://127.0.0.1:4096") as frames:
            async for data in frames:
                ...
    """

    def __init__(
        self,
        config: TransportConfig | None = None,
        http_transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the transport.

        Args:
            config: Transport settings
            http_transport: Optional httpx transport (e.g. httpx.MockTransport)
        """
        self._config = config or TransportConfig()
        self._http_transport = http_transport

    def endpoint(self, server_url: str) -> str:
        """Get the event stream URL for a server."""
        return server_url.rstrip("/") + self._config.events_path

    @asynccontextmanager
    async def open(self, server_url: str) -> AsyncIterator[AsyncIterator[str]]:
        url = self.endpoint(server_url)
        timeout = httpx.Timeout(self._config.connect_timeout, read=self._config.read_timeout)

        try:
            async with httpx.AsyncClient(
                headers=self._config.headers,
                timeout=timeout,
                transport=self._http_transport,
            ) as client:
                async with aconnect_sse(client, "GET", url) as event_source:
                    self._check_response(event_source.response)
                    log.debug("SSE stream opened", url=url)
                    yield self._frames(event_source)
        except httpx.HTTPError as e:
            raise TransportError(_describe(e)) from e

    @staticmethod
    def _check_response(response: httpx.Response) -> None:
        if not response.is_success:
            raise TransportError(
                f"Unexpected HTTP status {response.status_code}",
                ErrorCode.INVALID_RESPONSE,
            )
        content_type = response.headers.get("content-type", "")
        if "text/event-stream" not in content_type:
            raise TransportError(
                f"Unexpected content type: {content_type or 'none'}",
                ErrorCode.INVALID_RESPONSE,
            )

    @staticmethod
    async def _frames(event_source: EventSource) -> AsyncIterator[str]:
        # Every named event carries the same JSON schema
        async for sse in event_source.aiter_sse():
            yield sse.data


class WebSocketTransport(Transport):
    """Text frames over a WebSocket connection."""

    def __init__(self, config: TransportConfig | None = None) -> None:
        self._config = config or TransportConfig()

    @asynccontextmanager
    async def open(self, server_url: str) -> AsyncIterator[AsyncIterator[str]]:
        try:
            async with connect(
                server_url,
                open_timeout=self._config.connect_timeout,
                additional_headers=self._config.headers or None,
            ) as ws:
                log.debug("WebSocket stream opened", url=server_url)
                yield self._frames(ws)
        except (OSError, websockets.exceptions.WebSocketException) as e:
            raise TransportError(_describe(e)) from e

    @staticmethod
    async def _frames(ws: ClientConnection) -> AsyncIterator[str]:
        async for message in ws:
            if isinstance(message, str):
                yield message
            else:
                log.debug("Skipping binary frame", size=len(message))


class AutoTransport(Transport):
    """Selects SSE or WebSocket transport from the server URL scheme."""

    SSE_SCHEMES = frozenset({"http", "https"})
    WEBSOCKET_SCHEMES = frozenset({"ws", "wss"})

    def __init__(self, config: TransportConfig | None = None) -> None:
        config = config or TransportConfig()
        self._sse = SSETransport(config)
        self._websocket = WebSocketTransport(config)

    def select(self, server_url: str) -> Transport:
        """Get the transport responsible for a server URL.

        Raises:
            TransportError: If the URL scheme is not supported
        """
        scheme = urlsplit(server_url).scheme.lower()
        if scheme in self.SSE_SCHEMES:
            return self._sse
        if scheme in self.WEBSOCKET_SCHEMES:
            return self._websocket
        raise TransportError(
            f"Unsupported URL scheme: {scheme or 'none'}",
            ErrorCode.INVALID_RESPONSE,
        )

    @asynccontextmanager
    async def open(self, server_url: str) -> AsyncIterator[AsyncIterator[str]]:
        async with self.select(server_url).open(server_url) as frames:
            yield frames
