"""Streaming client for monitored servers.

This package provides the connection manager that enables:
- One auto-reconnecting event stream per server
- Validated session events delivered to subscribers
- Queryable per-server connection health
"""

from sessionmon.client.manager import (
    ConnectionManager,
    EventStream,
    ServerEvent,
    Subscription,
)
from sessionmon.client.transport import (
    AutoTransport,
    SSETransport,
    Transport,
    TransportError,
    WebSocketTransport,
)

__all__ = [
    # Manager
    "ConnectionManager",
    "Subscription",
    "EventStream",
    "ServerEvent",
    # Transports
    "Transport",
    "TransportError",
    "SSETransport",
    "WebSocketTransport",
    "AutoTransport",
]
