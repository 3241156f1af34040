"""Shared-filesystem backups to object storage.

Usage::

    python -m spotkeeper.backup run        # one backup now
    python -m spotkeeper.backup plan       # show run key + files, upload nothing
    python -m spotkeeper.backup schedule   # back up every BACKUP_INTERVAL_MINUTES

Objects are written to ``<run key>/<path relative to the mount>`` where the
run key is the UTC start time, e.g. ``2024-05-01-13-00-02/world/level.dat``.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys

from spotkeeper.backup.pipeline import (
    BackupPipeline,
    BackupSummary,
    SnapshotRun,
    UploadTask,
    discover_files,
    make_run_key,
    run_backup,
)
from spotkeeper.backup.uploader import ObjectUploader, UploadError, UploadPool
from spotkeeper.config import ConfigurationError, load_backup_settings, log_level

__all__ = [
    "BackupPipeline",
    "BackupSummary",
    "ObjectUploader",
    "SnapshotRun",
    "UploadError",
    "UploadPool",
    "UploadTask",
    "discover_files",
    "make_run_key",
    "run_backup",
    "main",
]


async def _schedule(interval_minutes: int) -> None:
    from spotkeeper.backup.scheduler import BackupScheduler

    scheduler = BackupScheduler(interval_minutes)
    await scheduler.start()
    try:
        while scheduler.running:
            await asyncio.sleep(3600)
    finally:
        await scheduler.stop()


# ──────────────────────────────────────────────────────────────────
# CLI entry point (python -m spotkeeper.backup)
# ──────────────────────────────────────────────────────────────────

def main() -> None:
    logging.basicConfig(level=log_level(), format="%(levelname)s: %(message)s")
    parser = argparse.ArgumentParser(
        prog="python -m spotkeeper.backup",
        description="Back up the shared game filesystem to object storage",
    )
    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("run", help="Run one backup now")
    sub.add_parser("plan", help="List the files a backup would upload")
    sub.add_parser("schedule", help="Run backups on a fixed interval until interrupted")
    args = parser.parse_args()

    try:
        settings = load_backup_settings()
    except ConfigurationError as exc:
        print(f"error: {exc}", file=sys.stderr)
        sys.exit(2)

    if args.command == "run":
        summary: BackupSummary = asyncio.run(run_backup(settings))
        print(json.dumps(summary.to_dict(), indent=2))
        if not summary.ok:
            sys.exit(1)
    elif args.command == "plan":
        snapshot = asyncio.run(BackupPipeline(settings).plan())
        print(f"Run key: {snapshot.run_key}")
        for rel in snapshot.discovered_files:
            print(f"  {snapshot.run_key}/{rel}")
        for name, exc in snapshot.discovery_failures:
            print(f"  ! {name}: {exc}")
        print(f"{len(snapshot.discovered_files)} file(s)")
    elif args.command == "schedule":
        try:
            asyncio.run(_schedule(settings.interval_minutes))
        except KeyboardInterrupt:
            print("\nScheduler stopped.")
