"""Backup pipeline — shared filesystem → object storage, one run per invocation.

A run:

1. tells players a backup is starting (best-effort),
2. enumerates the configured top-level directories on the shared filesystem,
3. uploads every file under ``<run key>/<relative path>`` through a
   fixed-width :class:`~spotkeeper.backup.uploader.UploadPool`,
4. tells players the backup finished (best-effort),
5. returns a :class:`BackupSummary`.

Console notices are a courtesy, not a synchronisation barrier: the pipeline
does not pause world writes, so a notice that cannot be delivered is logged and
the run carries on.
"""

from __future__ import annotations

import asyncio
import functools
import logging
import os
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from spotkeeper.backup.uploader import ObjectUploader, UploadPool
from spotkeeper.config import BackupSettings, load_backup_settings
from spotkeeper.console.client import send_message
from spotkeeper.context import InvocationContext
from spotkeeper.fleet import FleetResolver, resolve_console_host

logger = logging.getLogger(__name__)

RUN_KEY_FORMAT = "%Y-%m-%d-%H-%M-%S"

START_NOTICE = "Creating backup..."


@dataclass
class UploadTask:
    object_key: str
    source_path: Path
    relative_path: str
    outcome: str = "pending"  # pending | uploaded | failed
    error: Exception | None = None


@dataclass
class SnapshotRun:
    run_key: str
    source_directories: tuple[str, ...]
    discovered_files: list[str] = field(default_factory=list)
    # (configured directory or path, error) for entries that could not be listed
    discovery_failures: list[tuple[str, Exception]] = field(default_factory=list)


@dataclass
class BackupSummary:
    run_key: str
    file_count: int
    uploaded: int = 0
    failures: list[tuple[str, Exception]] = field(default_factory=list)
    duration_ms: int = 0

    @property
    def ok(self) -> bool:
        return not self.failures

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_key": self.run_key,
            "file_count": self.file_count,
            "uploaded": self.uploaded,
            "failures": [{"path": path, "error": str(exc)} for path, exc in self.failures],
            "duration_ms": self.duration_ms,
        }


def make_run_key(now: datetime | None = None) -> str:
    """Timestamp prefix for one run, UTC, second precision, filesystem-safe."""
    if now is None:
        now = datetime.now(tz=timezone.utc)
    elif now.tzinfo is not None:
        now = now.astimezone(timezone.utc)
    return now.strftime(RUN_KEY_FORMAT)


def discover_files(
    root: Path, directories: tuple[str, ...] | list[str]
) -> tuple[list[str], list[tuple[str, Exception]]]:
    """Enumerate backup sources below *root*.

    Each configured name that is a directory is walked completely; a plain
    file is included as-is.  Paths are returned relative to *root* in
    directory-listing order, depth first.  Names that cannot be read are
    returned as ``(name, error)`` failures instead of aborting the walk.
    """
    files: list[str] = []
    failures: list[tuple[str, Exception]] = []

    for name in directories:
        try:
            is_dir = (root / name).is_dir()
            if not is_dir:
                (root / name).stat()
        except OSError as exc:
            logger.warning("Backup source %s is not readable: %s", name, exc)
            failures.append((name, exc))
            continue

        if not is_dir:
            files.append(name)
            continue

        # Explicit stack instead of recursion; entries are pushed in reverse
        # so they pop in listing order.
        stack: list[tuple[str, bool]] = [(name, True)]
        while stack:
            rel, entry_is_dir = stack.pop()
            if not entry_is_dir:
                files.append(rel)
                continue
            try:
                with os.scandir(root / rel) as it:
                    entries = list(it)
            except OSError as exc:
                logger.warning("Cannot list %s: %s", rel, exc)
                failures.append((rel, exc))
                continue
            children: list[tuple[str, bool]] = []
            for entry in entries:
                child = f"{rel}/{entry.name}"
                if entry.is_dir(follow_symlinks=False):
                    children.append((child, True))
                elif entry.is_file():
                    children.append((child, False))
                else:
                    logger.debug("Skipping non-regular entry %s", child)
            stack.extend(reversed(children))

    return files, failures


class BackupPipeline:
    """One backup invocation.  Build a new instance for every run."""

    def __init__(
        self,
        settings: BackupSettings,
        ctx: InvocationContext | None = None,
        resolver: FleetResolver | None = None,
        uploader: ObjectUploader | None = None,
    ) -> None:
        self.settings = settings
        self.ctx = ctx or InvocationContext()
        self.resolver = resolver or FleetResolver(self.ctx)
        self.uploader = uploader or ObjectUploader(
            self.ctx, settings.bucket_name, settings.storage_class
        )

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #

    async def plan(self, now: datetime | None = None) -> SnapshotRun:
        """Compute the run key and discover files without uploading."""
        loop = asyncio.get_event_loop()
        files, failures = await loop.run_in_executor(
            self.ctx.executor,
            functools.partial(
                discover_files, self.settings.mount_path, self.settings.directories
            ),
        )
        return SnapshotRun(
            run_key=make_run_key(now),
            source_directories=self.settings.directories,
            discovered_files=files,
            discovery_failures=failures,
        )

    async def run(self, now: datetime | None = None) -> BackupSummary:
        """Notify, enumerate, upload, notify; return the run summary."""
        start = time.monotonic()
        await self.notify(START_NOTICE)

        snapshot = await self.plan(now)
        tasks = [
            UploadTask(
                object_key=f"{snapshot.run_key}/{rel}",
                source_path=self.settings.mount_path / rel,
                relative_path=rel,
            )
            for rel in snapshot.discovered_files
        ]
        logger.info(
            "Backup %s: %d file(s) from %s",
            snapshot.run_key, len(tasks), ", ".join(snapshot.source_directories) or "(none)",
        )

        async with UploadPool(self.settings.concurrency) as pool:
            for task in tasks:
                await pool.submit(task.relative_path, functools.partial(self._upload, task))
            upload_failures = await pool.join()

        summary = BackupSummary(
            run_key=snapshot.run_key,
            file_count=len(tasks),
            uploaded=sum(1 for t in tasks if t.outcome == "uploaded"),
            failures=list(snapshot.discovery_failures) + upload_failures,
            duration_ms=int((time.monotonic() - start) * 1000),
        )

        notice = f"Backup '{summary.run_key}' complete"
        if summary.failures:
            notice += f" ({len(summary.failures)} failed)"
        await self.notify(notice)

        logger.info(
            "Backup %s finished: %d/%d uploaded, %d failure(s), %d ms",
            summary.run_key, summary.uploaded, summary.file_count,
            len(summary.failures), summary.duration_ms,
        )
        return summary

    async def notify(self, message: str) -> bool:
        """Broadcast *message* to players.  Never raises; returns delivery status.

        Resolver and console failures are logged and swallowed: a backup must
        not fail or retry because a notice could not be delivered.
        """
        console = self.settings.console
        try:
            host = await resolve_console_host(self.resolver, console.scaling_group_name)
            await send_message(
                host,
                console.port,
                console.credential,
                message,
                timeout=console.timeout,
                idle_timeout=console.idle_timeout,
            )
        except Exception as exc:
            logger.warning("Console notice %r not delivered: %s", message, exc)
            return False
        return True

    # ------------------------------------------------------------------ #
    # Private helpers
    # ------------------------------------------------------------------ #

    async def _upload(self, task: UploadTask) -> None:
        try:
            await self.uploader.upload(task.object_key, task.source_path)
        except Exception as exc:
            task.outcome = "failed"
            task.error = exc
            raise
        task.outcome = "uploaded"


async def run_backup(
    settings: BackupSettings | None = None,
    ctx: InvocationContext | None = None,
    now: datetime | None = None,
) -> BackupSummary:
    """Run one backup.  Settings are read from the environment when omitted."""
    if settings is None:
        settings = load_backup_settings()
    return await BackupPipeline(settings, ctx).run(now)
