"""Per-server connection state and its transition rules.

State machine (per server URL):

    disconnected ──connect──▶ connecting ──open ok──▶ connected
                                  │                      │
                             open failed           stream error/close
                                  ▼                      ▼
                              reconnecting ◀─────────────┘
                                  │   │
                   delay elapsed ─┘   └─ attempts == max ──▶ failed

    any state ──disconnect──▶ disconnected
    failed ──connect──▶ connecting (attempts reset)

Only ``disconnected`` and ``failed`` have neither an open transport nor a
pending reconnect.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Iterator
from dataclasses import dataclass, replace
from enum import Enum
from typing import TYPE_CHECKING, Any

import structlog

if TYPE_CHECKING:
    from sessionmon.core.backoff import ReconnectPolicy

log = structlog.get_logger()


class ConnectionStatus(str, Enum):
    """Connection lifecycle states."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    FAILED = "failed"


class ErrorCode(str, Enum):
    """Categories of recorded connection errors."""

    NETWORK_ERROR = "network_error"
    INVALID_RESPONSE = "invalid_response"
    RETRIES_EXHAUSTED = "retries_exhausted"


class TransitionError(RuntimeError):
    """Raised when a state change is not allowed from the current state."""


@dataclass(frozen=True)
class ConnectionFailure:
    """Description of the last error seen on a connection.

    Attributes:
        code: Error category
        message: Human readable description
        timestamp: Wall-clock time of the error (seconds since epoch)
        recoverable: Whether the connection will retry on its own
    """

    code: ErrorCode
    message: str
    timestamp: float
    recoverable: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code.value,
            "message": self.message,
            "timestamp": self.timestamp,
            "recoverable": self.recoverable,
        }


@dataclass
class ConnectionState:
    """Connection health for one server.

    Attributes:
        server_url: Server this state tracks
        status: Current lifecycle state
        reconnect_attempts: Consecutive failures since the last success or reset
        max_reconnect_attempts: Failures after which the connection is failed
        last_error: Most recent error, if any
        last_connected: Wall-clock time of the last successful open
    """

    server_url: str
    status: ConnectionStatus = ConnectionStatus.DISCONNECTED
    reconnect_attempts: int = 0
    max_reconnect_attempts: int = 10
    last_error: ConnectionFailure | None = None
    last_connected: float | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-compatible dict for display layers."""
        return {
            "serverUrl": self.server_url,
            "status": self.status.value,
            "reconnectAttempts": self.reconnect_attempts,
            "maxReconnectAttempts": self.max_reconnect_attempts,
            "lastError": self.last_error.to_dict() if self.last_error else None,
            "lastConnected": self.last_connected,
        }


StateListener = Callable[[ConnectionState], None]


class ConnectionStore:
    """Mapping of server URL to connection state.

    The store mutates its entries in place and hands out copies only.
    Every transition is reported to ``on_change`` with a snapshot of the
    new state.

    Example:
        >>> store = ConnectionStore(ReconnectPolicy(), max_reconnect_attempts=3)
        >>> store.begin_connect("http://host:4096").status
        <ConnectionStatus.CONNECTING: 'connecting'>
    """

    def __init__(
        self,
        policy: ReconnectPolicy,
        max_reconnect_attempts: int = 10,
        on_change: StateListener | None = None,
    ) -> None:
        if max_reconnect_attempts < 1:
            raise ValueError("max_reconnect_attempts must be positive")

        self._policy = policy
        self._max_attempts = max_reconnect_attempts
        self._on_change = on_change
        self._states: dict[str, ConnectionState] = {}

    def __contains__(self, server_url: object) -> bool:
        return server_url in self._states

    def __len__(self) -> int:
        return len(self._states)

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._states))

    @property
    def policy(self) -> ReconnectPolicy:
        return self._policy

    def ensure(self, server_url: str) -> ConnectionState:
        """Get the state for a server, creating a disconnected one if absent."""
        state = self._states.get(server_url)
        if state is None:
            state = ConnectionState(
                server_url=server_url,
                max_reconnect_attempts=self._max_attempts,
            )
            self._states[server_url] = state
        return replace(state)

    def snapshot(self, server_url: str) -> ConnectionState | None:
        """Get a copy of the state for a server, or None if untracked."""
        state = self._states.get(server_url)
        return replace(state) if state is not None else None

    def snapshot_all(self) -> dict[str, ConnectionState]:
        """Get copies of all tracked states keyed by server URL."""
        return {url: replace(state) for url, state in self._states.items()}

    def begin_connect(self, server_url: str) -> ConnectionState:
        """Move a server to ``connecting``.

        From ``disconnected`` or ``failed`` the attempt counter is reset;
        from ``reconnecting`` it is kept (a scheduled retry is starting).

        Raises:
            TransitionError: If the server is already connecting or connected
        """
        self.ensure(server_url)
        state = self._states[server_url]

        match state.status:
            case ConnectionStatus.DISCONNECTED | ConnectionStatus.FAILED:
                state.reconnect_attempts = 0
            case ConnectionStatus.RECONNECTING:
                pass
            case _:
                raise TransitionError(f"Cannot connect {server_url} while {state.status.value}")

        return self._transition(state, ConnectionStatus.CONNECTING)

    def mark_connected(self, server_url: str) -> ConnectionState:
        """Record a successful stream open.

        Raises:
            TransitionError: If the server is not connecting
        """
        state = self._require(server_url, ConnectionStatus.CONNECTING)
        state.reconnect_attempts = 0
        state.last_error = None
        state.last_connected = time.time()
        return self._transition(state, ConnectionStatus.CONNECTED)

    def record_failure(
        self,
        server_url: str,
        message: str,
        code: ErrorCode = ErrorCode.NETWORK_ERROR,
    ) -> float | None:
        """Record a transport failure and decide whether to retry.

        Args:
            server_url: Server whose stream failed
            message: Error description
            code: Error category

        Returns:
            Delay in seconds before the next attempt, or None if the
            connection has exhausted its attempts and is now failed

        Raises:
            TransitionError: If the server is neither connecting nor connected
        """
        state = self._require(server_url, ConnectionStatus.CONNECTING, ConnectionStatus.CONNECTED)

        state.reconnect_attempts += 1
        state.last_error = ConnectionFailure(code=code, message=message, timestamp=time.time())
        self._transition(state, ConnectionStatus.RECONNECTING)

        if state.reconnect_attempts >= state.max_reconnect_attempts:
            state.last_error = ConnectionFailure(
                code=ErrorCode.RETRIES_EXHAUSTED,
                message=f"{message} (gave up after {state.reconnect_attempts} attempts)",
                timestamp=time.time(),
                recoverable=False,
            )
            self._transition(state, ConnectionStatus.FAILED)
            return None

        # First retry waits base_delay
        return self._policy.next_delay(state.reconnect_attempts - 1)

    def mark_disconnected(self, server_url: str) -> ConnectionState | None:
        """Move a server to ``disconnected``. No-op for unknown servers."""
        state = self._states.get(server_url)
        if state is None:
            return None
        state.reconnect_attempts = 0
        if state.status == ConnectionStatus.DISCONNECTED:
            return replace(state)
        return self._transition(state, ConnectionStatus.DISCONNECTED)

    def clear(self) -> None:
        """Stop tracking every server."""
        self._states.clear()

    def _require(self, server_url: str, *allowed: ConnectionStatus) -> ConnectionState:
        state = self._states.get(server_url)
        if state is None:
            raise TransitionError(f"Unknown server: {server_url}")
        if state.status not in allowed:
            raise TransitionError(
                f"Invalid transition for {server_url} from {state.status.value}"
            )
        return state

    def _transition(self, state: ConnectionState, status: ConnectionStatus) -> ConnectionState:
        previous = state.status
        state.status = status
        log.debug(
            "Connection state changed",
            server=state.server_url,
            previous=previous.value,
            status=status.value,
            attempts=state.reconnect_attempts,
        )

        snapshot = replace(state)
        if self._on_change is not None:
            self._on_change(snapshot)
        return snapshot
