"""Serverless entry points.

* :func:`backup_handler` — hourly schedule trigger, no payload.
* :func:`dns_handler`    — instance launch trigger, ``{"instanceId": ...}`` or
  the scaling service's launch notification.

Configuration is loaded before any network call; fatal errors propagate to
the trigger, whose own retry policy decides on re-invocation.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from spotkeeper.backup.pipeline import run_backup
from spotkeeper.config import load_backup_settings, load_dns_settings, log_level
from spotkeeper.context import InvocationContext
from spotkeeper.dns import handle_launch_event

logger = logging.getLogger(__name__)

# Leave room to report the result before the platform kills the invocation.
_DEADLINE_MARGIN_MS = 3000


def _configure_logging() -> None:
    root = logging.getLogger()
    root.setLevel(log_level())
    if not root.handlers:
        logging.basicConfig(level=log_level(), format="%(levelname)s %(name)s: %(message)s")


def _deadline_seconds(context: Any) -> float | None:
    remaining = getattr(context, "get_remaining_time_in_millis", None)
    if remaining is None:
        return None
    return max((remaining() - _DEADLINE_MARGIN_MS) / 1000, 0.0)


def backup_handler(event: Any = None, context: Any = None) -> dict:
    """Run one backup within the invocation's remaining time."""
    _configure_logging()
    settings = load_backup_settings()
    deadline = _deadline_seconds(context)
    logger.info("Backup invocation started (deadline=%s s)", deadline)

    ctx = InvocationContext()

    async def _run():
        try:
            return await asyncio.wait_for(run_backup(settings, ctx), timeout=deadline)
        finally:
            # Uploads still running at the deadline are left to finish on
            # their own threads; the handler does not wait for them.
            ctx.shutdown(wait=False)

    summary = asyncio.run(_run())
    return {"statusCode": 200, "body": summary.to_dict()}


def dns_handler(event: dict, context: Any = None) -> dict:
    """Publish the launched instance's public address."""
    _configure_logging()
    settings = load_dns_settings()
    ctx = InvocationContext()
    try:
        ack = asyncio.run(handle_launch_event(event, settings, ctx))
    finally:
        ctx.shutdown()
    return {
        "statusCode": 200,
        "message": (
            f"Updated DNS Record for {ack.record_name} in Hosted Zone "
            f"with ID {ack.zone_id} to {ack.value}"
        ),
        "acknowledgement": ack.to_dict(),
    }
