"""Wire schema for session events.

This package defines the events pushed by monitored servers and the
parsing of raw stream frames into those events.
"""

from sessionmon.protocol.events import (
    EventType,
    MessageEvent,
    MessageType,
    PermissionRequestEvent,
    SessionEvent,
    SessionMessage,
    SessionStatus,
    SessionUpdateEvent,
    create_message_event,
    create_permission_request_event,
    create_session_update_event,
    event_from_dict,
    is_valid_session_event,
)
from sessionmon.protocol.frames import parse_sse_data, serialize_event

__all__ = [
    # Schema
    "EventType",
    "SessionStatus",
    "MessageType",
    "SessionMessage",
    "SessionEvent",
    "SessionUpdateEvent",
    "MessageEvent",
    "PermissionRequestEvent",
    # Validation and construction
    "is_valid_session_event",
    "event_from_dict",
    "create_session_update_event",
    "create_message_event",
    "create_permission_request_event",
    # Frames
    "parse_sse_data",
    "serialize_event",
]
