#!/usr/bin/env python3
"""Event client example for sessionmon.

This script connects to one or more servers and prints session events
as they arrive, together with connection state changes.

Usage:
    python examples/event_client.py http://127.0.0.1:4096 ws://10.0.0.2:4096/api/ws

The client will:
    1. Open one auto-reconnecting stream per server
    2. Print connection state transitions
    3. Print permission requests prominently, other events in one line
"""

from __future__ import annotations

import asyncio
import sys

from sessionmon import ConnectionManager, ConnectionState, MonitorConfig
from sessionmon.protocol import MessageEvent, PermissionRequestEvent, SessionUpdateEvent


def print_state(state: ConnectionState) -> None:
    line = f"[{state.server_url}] {state.status.value}"
    if state.last_error is not None:
        line += f" ({state.last_error.message})"
    print(line)


async def main(urls: list[str]) -> int:
    """Watch servers until interrupted."""
    if not urls:
        print("Usage: event_client.py URL [URL ...]")
        return 1

    async with ConnectionManager(MonitorConfig(servers=urls)) as manager:
        manager.subscribe_state(print_state)
        for url in urls:
            manager.connect(url)

        async with manager.events() as stream:
            async for server_url, event in stream:
                match event:
                    case PermissionRequestEvent():
                        print(f"\n=== Permission request from {server_url} ===")
                        print(f"Session: {event.session_id}")
                        print(f"Tool:    {event.tool_name} {event.tool_args}")
                        print(f"Reason:  {event.description}\n")
                    case SessionUpdateEvent():
                        print(f"[{server_url}] {event.session_id}: {event.status.value}")
                    case MessageEvent():
                        kind = event.message.type.value
                        content = event.message.content.replace("\n", " ")[:60]
                        print(f"[{server_url}] {event.session_id} {kind}: {content}")

    return 0


if __name__ == "__main__":
    try:
        sys.exit(asyncio.run(main(sys.argv[1:])))
    except KeyboardInterrupt:
        print("\nInterrupted")
        sys.exit(0)
