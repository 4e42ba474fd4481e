"""Decoding of raw stream frames into session events.

A frame's data payload is a single UTF-8 JSON document. Anything that does
not decode, or decodes to something other than a well-formed session
event, is reported as ``None`` rather than raised.
"""

from __future__ import annotations

import json

from sessionmon.protocol.events import SessionEvent, event_from_dict


def parse_sse_data(raw: str) -> SessionEvent | None:
    """Parse a frame payload into a session event.

    Args:
        raw: Frame data as received from the stream

    Returns:
        The validated event, or None if the payload is malformed
    """
    if not isinstance(raw, str):
        return None

    try:
        decoded = json.loads(raw)
    except (ValueError, RecursionError):
        return None

    try:
        return event_from_dict(decoded)
    except ValueError:
        return None


def serialize_event(event: SessionEvent) -> str:
    """Serialize an event to a single-line JSON frame payload."""
    return json.dumps(event.to_dict(), separators=(",", ":"))
