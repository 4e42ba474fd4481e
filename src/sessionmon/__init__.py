"""sessionmon - Live session monitoring client.

Keeps auto-reconnecting event streams to multiple servers, validates the
session events they push and exposes per-server connection health.
"""

__version__ = "0.1.0"

# Connection management
from sessionmon.client.manager import ConnectionManager, EventStream, ServerEvent, Subscription

# Configuration and state
from sessionmon.core.backoff import ReconnectPolicy
from sessionmon.core.config import MonitorConfig
from sessionmon.core.state import ConnectionState, ConnectionStatus

# Event schema
from sessionmon.protocol.events import (
    EventType,
    MessageEvent,
    PermissionRequestEvent,
    SessionEvent,
    SessionStatus,
    SessionUpdateEvent,
    is_valid_session_event,
)
from sessionmon.protocol.frames import parse_sse_data

__all__ = [
    # Version
    "__version__",
    # Configuration
    "MonitorConfig",
    "ReconnectPolicy",
    # Connection management
    "ConnectionManager",
    "ConnectionState",
    "ConnectionStatus",
    "Subscription",
    "EventStream",
    "ServerEvent",
    # Events
    "EventType",
    "SessionStatus",
    "SessionEvent",
    "SessionUpdateEvent",
    "MessageEvent",
    "PermissionRequestEvent",
    "is_valid_session_event",
    "parse_sse_data",
]
