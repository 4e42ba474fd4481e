"""Session event schema pushed by monitored servers.

Every inbound event is a JSON object discriminated by its ``type`` field:

    session_update:
        {type, sessionId, status, lastActivity, metadata?}
    message:
        {type, sessionId, message: {id, content, timestamp, type}}
    permission_request:
        {type, sessionId, permissionId, toolName, toolArgs, description}

Unrecognized extra keys are tolerated on the wire. Free-form fields
(``metadata``, ``toolArgs``) are open mappings of JSON values and are not
validated beyond being mappings.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar


class EventType(str, Enum):
    """Discriminator values for session events."""

    SESSION_UPDATE = "session_update"
    MESSAGE = "message"
    PERMISSION_REQUEST = "permission_request"


class SessionStatus(str, Enum):
    """Observed state of a remote session."""

    IDLE = "idle"
    BUSY = "busy"
    WAITING_FOR_PERMISSION = "waiting_for_permission"
    COMPLETED = "completed"
    ERROR = "error"
    ABORTED = "aborted"


class MessageType(str, Enum):
    """Kinds of messages carried by ``message`` events."""

    USER_INPUT = "user_input"
    ASSISTANT_RESPONSE = "assistant_response"
    TOOL_EXECUTION = "tool_execution"
    SYSTEM_MESSAGE = "system_message"


_EVENT_TYPES = frozenset(t.value for t in EventType)
_SESSION_STATUSES = frozenset(s.value for s in SessionStatus)
_MESSAGE_TYPES = frozenset(t.value for t in MessageType)
_MESSAGE_KEYS = frozenset({"id", "content", "timestamp", "type"})


@dataclass
class SessionMessage:
    """Message body of a ``message`` event.

    Attributes:
        id: Message identifier
        content: Message text
        timestamp: Creation time (milliseconds since epoch)
        type: Message kind
        extra: Unrecognized wire keys, kept for round-tripping
    """

    id: str
    content: str
    timestamp: int
    type: MessageType
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to wire representation."""
        return {
            **self.extra,
            "id": self.id,
            "content": self.content,
            "timestamp": self.timestamp,
            "type": self.type.value,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> SessionMessage:
        return cls(
            id=data["id"],
            content=data["content"],
            timestamp=data["timestamp"],
            type=MessageType(data["type"]),
            extra={k: v for k, v in data.items() if k not in _MESSAGE_KEYS},
        )


@dataclass
class SessionUpdateEvent:
    """Status change of a session.

    Attributes:
        session_id: Session the update refers to
        status: New session status
        last_activity: Time of last activity (milliseconds since epoch)
        metadata: Free-form metadata, None when absent or null on the wire
    """

    type: ClassVar[EventType] = EventType.SESSION_UPDATE

    session_id: str
    status: SessionStatus
    last_activity: int
    metadata: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to wire representation."""
        data: dict[str, Any] = {
            "type": self.type.value,
            "sessionId": self.session_id,
            "status": self.status.value,
            "lastActivity": self.last_activity,
        }
        if self.metadata is not None:
            data["metadata"] = self.metadata
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> SessionUpdateEvent:
        metadata = data.get("metadata")
        return cls(
            session_id=data["sessionId"],
            status=SessionStatus(data["status"]),
            last_activity=data["lastActivity"],
            metadata=dict(metadata) if metadata is not None else None,
        )


@dataclass
class MessageEvent:
    """New message within a session."""

    type: ClassVar[EventType] = EventType.MESSAGE

    session_id: str
    message: SessionMessage

    def to_dict(self) -> dict[str, Any]:
        """Convert to wire representation."""
        return {
            "type": self.type.value,
            "sessionId": self.session_id,
            "message": self.message.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> MessageEvent:
        return cls(
            session_id=data["sessionId"],
            message=SessionMessage.from_dict(data["message"]),
        )


@dataclass
class PermissionRequestEvent:
    """Tool invocation awaiting user approval.

    Attributes:
        session_id: Session asking for permission
        permission_id: Identifier to answer the request with
        tool_name: Tool the session wants to run
        tool_args: Tool arguments, passed through untouched
        description: Human readable summary
    """

    type: ClassVar[EventType] = EventType.PERMISSION_REQUEST

    session_id: str
    permission_id: str
    tool_name: str
    tool_args: dict[str, Any]
    description: str

    def to_dict(self) -> dict[str, Any]:
        """Convert to wire representation."""
        return {
            "type": self.type.value,
            "sessionId": self.session_id,
            "permissionId": self.permission_id,
            "toolName": self.tool_name,
            "toolArgs": self.tool_args,
            "description": self.description,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> PermissionRequestEvent:
        return cls(
            session_id=data["sessionId"],
            permission_id=data["permissionId"],
            tool_name=data["toolName"],
            tool_args=dict(data["toolArgs"]),
            description=data["description"],
        )


SessionEvent = SessionUpdateEvent | MessageEvent | PermissionRequestEvent

_EVENT_CLASSES: dict[str, type[SessionEvent]] = {
    EventType.SESSION_UPDATE.value: SessionUpdateEvent,
    EventType.MESSAGE.value: MessageEvent,
    EventType.PERMISSION_REQUEST.value: PermissionRequestEvent,
}


def _is_int(value: object) -> bool:
    # bool is an int subclass but never a valid timestamp
    return isinstance(value, int) and not isinstance(value, bool)


def _is_member(value: object, allowed: frozenset[str]) -> bool:
    return isinstance(value, str) and value in allowed


def _is_valid_message(value: object) -> bool:
    return (
        isinstance(value, Mapping)
        and isinstance(value.get("id"), str)
        and isinstance(value.get("content"), str)
        and _is_int(value.get("timestamp"))
        and _is_member(value.get("type"), _MESSAGE_TYPES)
    )


def is_valid_session_event(value: object) -> bool:
    """Check whether a value has the shape of a session event.

    Accepts raw wire mappings as well as event instances. Never raises.

    Args:
        value: Candidate event

    Returns:
        True if the value is a well-formed session event
    """
    if isinstance(value, (SessionUpdateEvent, MessageEvent, PermissionRequestEvent)):
        value = value.to_dict()

    if not isinstance(value, Mapping):
        return False

    event_type = value.get("type")
    if not _is_member(event_type, _EVENT_TYPES):
        return False

    session_id = value.get("sessionId")
    if not isinstance(session_id, str) or not session_id:
        return False

    match event_type:
        case "session_update":
            metadata = value.get("metadata")
            return (
                _is_member(value.get("status"), _SESSION_STATUSES)
                and _is_int(value.get("lastActivity"))
                and (metadata is None or isinstance(metadata, Mapping))
            )
        case "message":
            return _is_valid_message(value.get("message"))
        case _:
            return (
                isinstance(value.get("permissionId"), str)
                and isinstance(value.get("toolName"), str)
                and isinstance(value.get("toolArgs"), Mapping)
                and isinstance(value.get("description"), str)
            )


def event_from_dict(data: object) -> SessionEvent:
    """Build a typed event from its wire representation.

    Args:
        data: Decoded JSON value

    Returns:
        The matching event dataclass

    Raises:
        ValueError: If the value is not a well-formed session event
    """
    if not isinstance(data, Mapping) or not is_valid_session_event(data):
        raise ValueError("Not a valid session event")
    return _EVENT_CLASSES[data["type"]].from_dict(data)


# Factory functions for creating session events


def _require_session_id(session_id: str) -> str:
    if not isinstance(session_id, str) or not session_id:
        raise ValueError("sessionId must be a non-empty string")
    return session_id


def create_session_update_event(
    session_id: str,
    status: SessionStatus | str,
    last_activity: int,
    metadata: Mapping[str, Any] | None = None,
) -> SessionUpdateEvent:
    """Create a session status update event.

    Args:
        session_id: Session identifier (non-empty)
        status: Session status
        last_activity: Time of last activity (milliseconds since epoch)
        metadata: Optional free-form metadata

    Returns:
        Session update event

    Raises:
        ValueError: If session_id is empty, status is unknown or
            last_activity is not an integer
    """
    if not _is_int(last_activity):
        raise ValueError("lastActivity must be an integer")
    return SessionUpdateEvent(
        session_id=_require_session_id(session_id),
        status=SessionStatus(status),
        last_activity=last_activity,
        metadata=dict(metadata) if metadata is not None else None,
    )


def create_message_event(
    session_id: str,
    message_id: str,
    content: str,
    timestamp: int,
    message_type: MessageType | str,
) -> MessageEvent:
    """Create a message event.

    Raises:
        ValueError: If session_id is empty, message_type is unknown or
            timestamp is not an integer
    """
    if not _is_int(timestamp):
        raise ValueError("message timestamp must be an integer")
    return MessageEvent(
        session_id=_require_session_id(session_id),
        message=SessionMessage(
            id=message_id,
            content=content,
            timestamp=timestamp,
            type=MessageType(message_type),
        ),
    )


def create_permission_request_event(
    session_id: str,
    permission_id: str,
    tool_name: str,
    tool_args: Mapping[str, Any],
    description: str,
) -> PermissionRequestEvent:
    """Create a permission request event.

    Raises:
        ValueError: If session_id is empty
    """
    return PermissionRequestEvent(
        session_id=_require_session_id(session_id),
        permission_id=permission_id,
        tool_name=tool_name,
        tool_args=dict(tool_args),
        description=description,
    )
