"""Tests for stream transports."""

from __future__ import annotations

import socket

import httpx
import pytest
from websockets.asyncio.server import ServerConnection, serve

from sessionmon.client.manager import ConnectionManager
from sessionmon.client.transport import (
    AutoTransport,
    SSETransport,
    TransportError,
    WebSocketTransport,
)
from sessionmon.core.config import MonitorConfig, ReconnectConfig, TransportConfig
from sessionmon.core.state import ErrorCode
from sessionmon.protocol.events import SessionEvent
from tests.conftest import wait_until

URL = "http://127.0.0.1:4096"

UPDATE = '{"type":"session_update","sessionId":"ses_1","status":"busy","lastActivity":1}'
PERMISSION = (
    '{"type":"permission_request","sessionId":"ses_1","permissionId":"p1",'
    '"toolName":"bash","toolArgs":{"command":"ls"},"description":"List files"}'
)


def sse_body(*payloads: str) -> bytes:
    """Build an event-stream body with one named event per payload."""
    chunks = [": keep-alive\n\n"]
    chunks.extend(f"event: session\ndata: {payload}\n\n" for payload in payloads)
    return "".join(chunks).encode()


def sse_response(body: bytes, status_code: int = 200) -> httpx.Response:
    return httpx.Response(
        status_code,
        headers={"content-type": "text/event-stream"},
        content=body,
    )


def unused_port() -> int:
    with socket.socket() as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


class TestSSETransport:
    """Tests for SSETransport."""

    def test_endpoint(self) -> None:
        """Events path is appended to the server URL."""
        transport = SSETransport()
        assert transport.endpoint(URL) == "http://127.0.0.1:4096/api/events"
        assert transport.endpoint(URL + "/") == "http://127.0.0.1:4096/api/events"

    def test_endpoint_custom_path(self) -> None:
        """Configured events path is used."""
        transport = SSETransport(TransportConfig(events_path="/events"))
        assert transport.endpoint("https://host/base") == "https://host/base/events"

    async def test_yields_frame_data(self) -> None:
        """Should yield the data of every event in order."""
        requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return sse_response(sse_body(UPDATE, PERMISSION))

        transport = SSETransport(http_transport=httpx.MockTransport(handler))
        async with transport.open(URL) as frames:
            received = [data async for data in frames]

        assert received == [UPDATE, PERMISSION]
        assert requests[0].method == "GET"
        assert str(requests[0].url) == "http://127.0.0.1:4096/api/events"
        assert requests[0].headers["accept"] == "text/event-stream"

    async def test_sends_configured_headers(self) -> None:
        """Configured headers go out with the stream request."""
        requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return sse_response(sse_body())

        config = TransportConfig(headers={"Authorization": "Bearer secret"})
        transport = SSETransport(config, http_transport=httpx.MockTransport(handler))
        async with transport.open(URL) as frames:
            assert [data async for data in frames] == []

        assert requests[0].headers["authorization"] == "Bearer secret"

    async def test_http_error_status(self) -> None:
        """Non-2xx responses are invalid responses."""
        transport = SSETransport(
            http_transport=httpx.MockTransport(lambda request: httpx.Response(404))
        )

        with pytest.raises(TransportError, match="404") as exc_info:
            async with transport.open(URL):
                pass

        assert exc_info.value.code == ErrorCode.INVALID_RESPONSE

    async def test_wrong_content_type(self) -> None:
        """Non event-stream responses are invalid responses."""
        transport = SSETransport(
            http_transport=httpx.MockTransport(
                lambda request: httpx.Response(200, json={"status": "ok"})
            )
        )

        with pytest.raises(TransportError, match="content type") as exc_info:
            async with transport.open(URL):
                pass

        assert exc_info.value.code == ErrorCode.INVALID_RESPONSE

    async def test_connect_error(self) -> None:
        """Network errors become network transport errors."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("Connection refused", request=request)

        transport = SSETransport(http_transport=httpx.MockTransport(handler))

        with pytest.raises(TransportError, match="Connection refused") as exc_info:
            async with transport.open(URL):
                pass

        assert exc_info.value.code == ErrorCode.NETWORK_ERROR


class TestWebSocketTransport:
    """Tests for WebSocketTransport against a local server."""

    async def test_yields_text_frames(self) -> None:
        """Text messages are yielded and binary messages skipped."""

        async def handler(ws: ServerConnection) -> None:
            await ws.send(UPDATE)
            await ws.send(b"\x00\x01")
            await ws.send(PERMISSION)

        async with serve(handler, "127.0.0.1", 0) as server:
            port = server.sockets[0].getsockname()[1]
            transport = WebSocketTransport()

            async with transport.open(f"ws://127.0.0.1:{port}") as frames:
                received = [data async for data in frames]

        assert received == [UPDATE, PERMISSION]

    async def test_refused(self) -> None:
        """Unreachable servers raise a network transport error."""
        transport = WebSocketTransport(TransportConfig(connect_timeout=1.0))

        with pytest.raises(TransportError) as exc_info:
            async with transport.open(f"ws://127.0.0.1:{unused_port()}"):
                pass

        assert exc_info.value.code == ErrorCode.NETWORK_ERROR


class TestAutoTransport:
    """Tests for AutoTransport."""

    @pytest.mark.parametrize("url", ["http://host:4096", "https://host", "HTTP://host"])
    def test_selects_sse(self, url: str) -> None:
        """HTTP URLs use server-sent events."""
        assert isinstance(AutoTransport().select(url), SSETransport)

    @pytest.mark.parametrize("url", ["ws://host:4096/api/ws", "wss://host"])
    def test_selects_websocket(self, url: str) -> None:
        """WebSocket URLs use the WebSocket transport."""
        assert isinstance(AutoTransport().select(url), WebSocketTransport)

    @pytest.mark.parametrize("url", ["ftp://host", "host:4096", "no-scheme"])
    def test_unsupported_scheme(self, url: str) -> None:
        """Other schemes are rejected as invalid."""
        with pytest.raises(TransportError, match="Unsupported URL scheme") as exc_info:
            AutoTransport().select(url)

        assert exc_info.value.code == ErrorCode.INVALID_RESPONSE

    async def test_open_unsupported_scheme(self) -> None:
        """Opening an unsupported URL fails on enter."""
        with pytest.raises(TransportError):
            async with AutoTransport().open("ftp://host"):
                pass


class TestManagerOverSSE:
    """Connection manager driven by the SSE transport."""

    async def test_receives_events(self) -> None:
        """Events from the HTTP stream reach subscribers."""
        transport = SSETransport(
            http_transport=httpx.MockTransport(
                lambda request: sse_response(sse_body(UPDATE, "not json", PERMISSION))
            )
        )
        config = MonitorConfig(
            reconnect=ReconnectConfig(base_delay=0.05, max_delay=0.05, max_attempts=3)
        )
        received: list[SessionEvent] = []

        async with ConnectionManager(config, transport=transport) as manager:
            manager.subscribe(lambda url, event: received.append(event))
            manager.connect(URL)
            await wait_until(lambda: len(received) >= 2)

        assert [event.type.value for event in received[:2]] == [
            "session_update",
            "permission_request",
        ]

    async def test_invalid_response_recorded(self) -> None:
        """HTTP errors show up in the connection state."""
        transport = SSETransport(
            http_transport=httpx.MockTransport(lambda request: httpx.Response(500))
        )
        config = MonitorConfig(
            reconnect=ReconnectConfig(base_delay=30.0, max_delay=30.0, max_attempts=3)
        )

        async with ConnectionManager(config, transport=transport) as manager:
            manager.connect(URL)

            def has_error() -> bool:
                state = manager.get_connection_state(URL)
                return state is not None and state.last_error is not None

            await wait_until(has_error)

            state = manager.get_connection_state(URL)
            assert state is not None
            assert state.last_error is not None
            assert state.last_error.code == ErrorCode.INVALID_RESPONSE
            assert "500" in state.last_error.message
