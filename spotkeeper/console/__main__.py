"""Send one console command to the running server.

Usage::

    python -m spotkeeper.console list
    python -m spotkeeper.console say "Restarting in 5 minutes"
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys

from spotkeeper.config import ConfigurationError, load_console_settings, log_level
from spotkeeper.console.client import ConsoleError, send_command
from spotkeeper.context import InvocationContext
from spotkeeper.fleet import FleetError, FleetResolver, resolve_console_host


async def run(text: str) -> str:
    settings = load_console_settings()
    resolver = FleetResolver(InvocationContext())
    host = await resolve_console_host(resolver, settings.scaling_group_name)
    return await send_command(
        host,
        settings.port,
        settings.credential,
        text,
        timeout=settings.timeout,
        idle_timeout=settings.idle_timeout,
    )


def main() -> None:
    logging.basicConfig(level=log_level(), format="%(levelname)s: %(message)s")
    parser = argparse.ArgumentParser(
        prog="python -m spotkeeper.console",
        description="Run a command on the game server's remote console",
    )
    parser.add_argument("command", nargs="+", help="Command text (joined with spaces)")
    args = parser.parse_args()

    try:
        reply = asyncio.run(run(" ".join(args.command)))
    except (ConfigurationError, FleetError, ConsoleError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        sys.exit(1)
    print(reply)


if __name__ == "__main__":
    main()
