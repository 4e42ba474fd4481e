"""Configuration, backoff policy and connection state for sessionmon."""

from sessionmon.core.backoff import ReconnectPolicy
from sessionmon.core.config import MonitorConfig, ReconnectConfig, TransportConfig
from sessionmon.core.state import (
    ConnectionFailure,
    ConnectionState,
    ConnectionStatus,
    ConnectionStore,
    ErrorCode,
    TransitionError,
)

__all__ = [
    # Configuration
    "MonitorConfig",
    "ReconnectConfig",
    "TransportConfig",
    # Backoff
    "ReconnectPolicy",
    # Connection state
    "ConnectionStatus",
    "ConnectionState",
    "ConnectionFailure",
    "ConnectionStore",
    "ErrorCode",
    "TransitionError",
]
