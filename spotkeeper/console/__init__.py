"""Remote console (RCON-style) protocol client.

Re-exports the session client, one-shot helpers and error types from
:mod:`spotkeeper.console.client`.
"""

from __future__ import annotations

from spotkeeper.console.client import (
    ConsoleAuthError,
    ConsoleClient,
    ConsoleConnectionError,
    ConsoleError,
    ConsoleProtocolError,
    ConsoleState,
    ConsoleTimeoutError,
    format_message,
    send_command,
    send_message,
)

__all__ = [
    "ConsoleClient",
    "ConsoleState",
    "ConsoleError",
    "ConsoleConnectionError",
    "ConsoleAuthError",
    "ConsoleProtocolError",
    "ConsoleTimeoutError",
    "format_message",
    "send_command",
    "send_message",
]
