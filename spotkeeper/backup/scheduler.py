"""In-process backup schedule — runs the pipeline every *interval* minutes.

Serverless deployments use an external hourly trigger instead; this loop is
for running spotkeeper as a long-lived process.  Every cycle is an independent
invocation: settings are re-read and a fresh context is built.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Awaitable, Callable

from spotkeeper.backup.pipeline import BackupSummary, run_backup
from spotkeeper.config import DEFAULT_INTERVAL_MINUTES

logger = logging.getLogger(__name__)


class BackupScheduler:
    """Runs periodic backups in the background."""

    def __init__(
        self,
        interval_minutes: int = DEFAULT_INTERVAL_MINUTES,
        job: Callable[[], Awaitable[BackupSummary]] = run_backup,
    ) -> None:
        if interval_minutes < 1:
            raise ValueError(f"Interval must be at least 1 minute, got {interval_minutes}")
        self.interval = interval_minutes
        self._job = job
        self._running = False
        self._task: asyncio.Task | None = None
        self._last_run: str | None = None
        self._last_summary: BackupSummary | None = None

    async def start(self) -> None:
        """Start the background loop."""
        if self._running:
            logger.warning("Backup scheduler is already running")
            return

        self._running = True
        self._task = asyncio.create_task(self._loop())
        logger.info("Backup scheduler started (interval=%d min)", self.interval)

    async def stop(self) -> None:
        """Stop the background loop, abandoning a run in progress."""
        self._running = False
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Backup scheduler stopped")

    async def run_once(self) -> BackupSummary | None:
        """Run a single cycle.  Failures are logged, not raised."""
        try:
            summary = await self._job()
        except Exception as exc:
            logger.error("Backup cycle failed: %s", exc)
            return None
        finally:
            self._last_run = datetime.now(timezone.utc).isoformat()
        self._last_summary = summary
        return summary

    @property
    def running(self) -> bool:
        return self._running

    @property
    def last_run(self) -> str | None:
        """ISO timestamp of the last attempted cycle, or None."""
        return self._last_run

    @property
    def last_summary(self) -> BackupSummary | None:
        return self._last_summary

    async def _loop(self) -> None:
        while self._running:
            await self.run_once()

            # Sleep in small increments so stop() is responsive
            for _ in range(self.interval * 60):
                if not self._running:
                    return
                await asyncio.sleep(1)
