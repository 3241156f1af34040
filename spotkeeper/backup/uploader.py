"""Bounded-concurrency uploads to object storage.

:class:`UploadPool` is a fixed-width admission gate: :meth:`UploadPool.submit`
blocks while *width* uploads are in flight, tasks start in submission order and
may finish in any order.  A failing task is recorded, never re-raised, so its
siblings keep running.
"""

from __future__ import annotations

import asyncio
import functools
import logging
from pathlib import Path
from typing import Any, Awaitable, Callable

from botocore.exceptions import BotoCoreError, ClientError

from spotkeeper.config import DEFAULT_BACKUP_CONCURRENCY, DEFAULT_STORAGE_CLASS
from spotkeeper.context import InvocationContext

logger = logging.getLogger(__name__)

CONTENT_TYPE = "application/octet-stream"


class UploadError(Exception):
    """Raised when one file cannot be written to object storage."""

    def __init__(self, path: str, message: str) -> None:
        super().__init__(f"{path}: {message}")
        self.path = path


class UploadPool:
    """Run at most *width* coroutines at once and collect their failures.

    Use as an async context manager; leaving the block early (error or
    cancellation) cancels everything still in flight::

        async with UploadPool(6) as pool:
            for task in tasks:
                await pool.submit(task.source_path, lambda t=task: upload(t))
            failures = await pool.join()
    """

    def __init__(self, width: int = DEFAULT_BACKUP_CONCURRENCY) -> None:
        if width < 1:
            raise ValueError(f"Pool width must be at least 1, got {width}")
        self.width = width
        self.in_flight = 0
        self.peak_in_flight = 0
        self.completed = 0
        self._gate = asyncio.Semaphore(width)
        self._tasks: list[asyncio.Task] = []
        self._failures: list[tuple[str, Exception]] = []

    async def __aenter__(self) -> "UploadPool":
        return self

    async def __aexit__(self, exc_type: Any, *_: object) -> None:
        if exc_type is not None:
            await self.cancel()

    async def submit(self, name: str, job: Callable[[], Awaitable[Any]]) -> None:
        """Wait for a free slot, then start *job* in the background."""
        await self._gate.acquire()
        self.in_flight += 1
        self.peak_in_flight = max(self.peak_in_flight, self.in_flight)
        self._tasks.append(asyncio.create_task(self._run(name, job)))

    async def join(self) -> list[tuple[str, Exception]]:
        """Wait for every submitted job; return ``(name, error)`` per failure."""
        if self._tasks:
            await asyncio.gather(*self._tasks)
        return list(self._failures)

    async def cancel(self) -> None:
        """Abandon all in-flight jobs."""
        pending = [t for t in self._tasks if not t.done()]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
            logger.warning("Abandoned %d in-flight upload(s)", len(pending))

    async def _run(self, name: str, job: Callable[[], Awaitable[Any]]) -> None:
        try:
            await job()
        except Exception as exc:
            logger.warning("Upload failed for %s: %s", name, exc)
            self._failures.append((name, exc))
        finally:
            self.in_flight -= 1
            self.completed += 1
            self._gate.release()


class ObjectUploader:
    """Streams single files into the backup bucket."""

    def __init__(
        self,
        ctx: InvocationContext,
        bucket: str,
        storage_class: str = DEFAULT_STORAGE_CLASS,
    ) -> None:
        self.ctx = ctx
        self.bucket = bucket
        self.storage_class = storage_class

    async def upload(self, key: str, source: Path) -> None:
        """Write *source* to ``s3://bucket/key``; raise :class:`UploadError` on failure."""
        loop = asyncio.get_event_loop()
        await loop.run_in_executor(self.ctx.executor, functools.partial(self._put, key, source))
        logger.debug("Uploaded %s → s3://%s/%s", source, self.bucket, key)

    def _put(self, key: str, source: Path) -> None:
        try:
            with open(source, "rb") as body:
                self.ctx.s3.put_object(
                    Bucket=self.bucket,
                    Key=key,
                    Body=body,
                    ContentType=CONTENT_TYPE,
                    StorageClass=self.storage_class,
                )
        except (ClientError, BotoCoreError, OSError) as exc:
            raise UploadError(str(source), str(exc)) from exc
