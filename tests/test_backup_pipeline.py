"""Tests for the backup pipeline — storage and console are mocked, the
shared filesystem is a tmp_path tree."""

from __future__ import annotations

import dataclasses
import threading
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from botocore.exceptions import ClientError

from spotkeeper.backup.pipeline import (
    BackupPipeline,
    discover_files,
    make_run_key,
    run_backup,
)
from spotkeeper.console import ConsoleConnectionError
from spotkeeper.context import InvocationContext
from spotkeeper.fleet import NoInstancesError

NOW = datetime(2024, 5, 1, 13, 0, 2, tzinfo=timezone.utc)

EXPECTED_FILES = {
    "world/level.dat",
    "world/region/r.0.0.mca",
    "world/region/r.0.1.mca",
    "world_nether/DIM-1/region/r.-1.0.mca",
    "server.properties",
}


def _s3():
    s3 = MagicMock()
    s3.keys = []
    lock = threading.Lock()

    def _put(**kwargs):
        with lock:
            s3.keys.append(kwargs["Key"])
        return {"ETag": '"abc"'}

    s3.put_object.side_effect = _put
    return s3


# ------------------------------------------------------------------ #
# Discovery
# ------------------------------------------------------------------ #

class TestDiscoverFiles:
    def test_counts_every_regular_file(self, backup_root):
        files, failures = discover_files(backup_root, ["world", "world_nether", "server.properties"])

        assert failures == []
        assert len(files) == 5
        assert set(files) == EXPECTED_FILES

    def test_paths_are_relative_to_root(self, backup_root):
        files, _ = discover_files(backup_root, ["world"])
        for rel in files:
            assert not rel.startswith("/")
            assert (backup_root / rel).is_file()

    def test_walk_is_reproducible(self, backup_root):
        first, _ = discover_files(backup_root, ["world", "world_nether"])
        second, _ = discover_files(backup_root, ["world", "world_nether"])
        assert first == second

    def test_directory_contents_follow_configured_order(self, backup_root):
        files, _ = discover_files(backup_root, ["world_nether", "world"])
        assert files[0].startswith("world_nether/")
        assert all(f.startswith("world/") for f in files[1:])

    def test_deep_tree(self, tmp_path):
        current = tmp_path / "deep"
        current.mkdir()
        for i in range(200):
            current = current / f"d{i}"
        current.mkdir(parents=True)
        (current / "leaf.txt").write_text("x")

        files, failures = discover_files(tmp_path, ["deep"])

        assert failures == []
        assert len(files) == 1
        assert files[0].endswith("d199/leaf.txt")

    def test_empty_directory(self, tmp_path):
        (tmp_path / "world").mkdir()
        files, failures = discover_files(tmp_path, ["world"])
        assert files == []
        assert failures == []

    def test_missing_directory_is_a_failure_entry(self, backup_root):
        files, failures = discover_files(backup_root, ["world", "world_the_end"])

        assert len(files) == 3
        assert [name for name, _ in failures] == ["world_the_end"]
        assert isinstance(failures[0][1], FileNotFoundError)

    def test_directory_symlinks_not_followed(self, backup_root):
        (backup_root / "world" / "loop").symlink_to(backup_root / "world", target_is_directory=True)
        files, _ = discover_files(backup_root, ["world"])
        assert len(files) == 3


def test_run_key_format():
    assert make_run_key(NOW) == "2024-05-01-13-00-02"


def test_run_key_converts_to_utc():
    local = NOW.astimezone(timezone(timedelta(hours=2)))
    assert make_run_key(local) == "2024-05-01-13-00-02"


def test_run_keys_differ_across_seconds():
    assert make_run_key(NOW) != make_run_key(NOW + timedelta(seconds=1))


# ------------------------------------------------------------------ #
# Full runs
# ------------------------------------------------------------------ #

class TestBackupRun:
    @pytest.mark.asyncio
    async def test_uploads_every_file_under_run_key(self, backup_settings, resolver):
        s3 = _s3()
        pipeline = BackupPipeline(backup_settings, InvocationContext(s3=s3), resolver=resolver)

        with patch("spotkeeper.backup.pipeline.send_message", new=AsyncMock()) as notice:
            summary = await pipeline.run(NOW)

        assert summary.run_key == "2024-05-01-13-00-02"
        assert summary.file_count == 5
        assert summary.uploaded == 5
        assert summary.failures == []
        assert set(s3.keys) == {f"2024-05-01-13-00-02/{f}" for f in EXPECTED_FILES}

        messages = [c.args[3] for c in notice.await_args_list]
        assert messages == ["Creating backup...", "Backup '2024-05-01-13-00-02' complete"]
        assert notice.await_args_list[0].args[:3] == ("10.0.1.5", 25575, "hunter2")

    @pytest.mark.asyncio
    async def test_empty_directory_list(self, backup_settings, resolver):
        settings = dataclasses.replace(backup_settings, directories=())
        s3 = _s3()
        pipeline = BackupPipeline(settings, InvocationContext(s3=s3), resolver=resolver)

        with patch("spotkeeper.backup.pipeline.send_message", new=AsyncMock()):
            summary = await pipeline.run(NOW)

        assert summary.file_count == 0
        assert summary.failures == []
        assert summary.ok
        s3.put_object.assert_not_called()

    @pytest.mark.asyncio
    async def test_missing_directory_does_not_abort(self, backup_settings, resolver):
        settings = dataclasses.replace(backup_settings, directories=("world_the_end", "world"))
        s3 = _s3()
        pipeline = BackupPipeline(settings, InvocationContext(s3=s3), resolver=resolver)

        with patch("spotkeeper.backup.pipeline.send_message", new=AsyncMock()) as notice:
            summary = await pipeline.run(NOW)

        assert summary.file_count == 3
        assert summary.uploaded == 3
        assert [path for path, _ in summary.failures] == ["world_the_end"]
        assert notice.await_args_list[-1].args[3].endswith("complete (1 failed)")

    @pytest.mark.asyncio
    async def test_upload_failure_recorded_siblings_uploaded(self, backup_settings, resolver):
        s3 = _s3()
        ok = s3.put_object.side_effect

        def _put(**kwargs):
            if kwargs["Key"].endswith("r.0.1.mca"):
                raise ClientError({"Error": {"Code": "SlowDown", "Message": "slow"}}, "PutObject")
            return ok(**kwargs)

        s3.put_object.side_effect = _put
        pipeline = BackupPipeline(backup_settings, InvocationContext(s3=s3), resolver=resolver)

        with patch("spotkeeper.backup.pipeline.send_message", new=AsyncMock()):
            summary = await pipeline.run(NOW)

        assert summary.file_count == 5
        assert summary.uploaded == 4
        assert [path for path, _ in summary.failures] == ["world/region/r.0.1.mca"]
        assert "SlowDown" in str(summary.failures[0][1])
        assert summary.to_dict()["failures"][0]["path"] == "world/region/r.0.1.mca"

    @pytest.mark.asyncio
    async def test_console_failure_is_not_fatal(self, backup_settings, resolver):
        s3 = _s3()
        pipeline = BackupPipeline(backup_settings, InvocationContext(s3=s3), resolver=resolver)
        failing = AsyncMock(side_effect=ConsoleConnectionError("refused"))

        with patch("spotkeeper.backup.pipeline.send_message", new=failing):
            summary = await pipeline.run(NOW)

        assert summary.uploaded == 5
        assert failing.await_count == 2

    @pytest.mark.asyncio
    async def test_resolver_failure_is_not_fatal(self, backup_settings, resolver):
        resolver.resolve_private_addresses.side_effect = NoInstancesError("empty")
        s3 = _s3()
        pipeline = BackupPipeline(backup_settings, InvocationContext(s3=s3), resolver=resolver)

        with patch("spotkeeper.backup.pipeline.send_message", new=AsyncMock()) as notice:
            summary = await pipeline.run(NOW)

        assert summary.uploaded == 5
        notice.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_address_resolved_per_notice(self, backup_settings, resolver):
        pipeline = BackupPipeline(backup_settings, InvocationContext(s3=_s3()), resolver=resolver)

        with patch("spotkeeper.backup.pipeline.send_message", new=AsyncMock()):
            await pipeline.run(NOW)

        assert resolver.resolve_private_addresses.await_count == 2

    @pytest.mark.asyncio
    async def test_runs_at_different_seconds_do_not_collide(self, backup_settings, resolver):
        s3 = _s3()
        with patch("spotkeeper.backup.pipeline.send_message", new=AsyncMock()):
            await BackupPipeline(backup_settings, InvocationContext(s3=s3), resolver=resolver).run(NOW)
            first = set(s3.keys)
            s3.keys.clear()
            await BackupPipeline(backup_settings, InvocationContext(s3=s3), resolver=resolver).run(
                NOW + timedelta(seconds=1)
            )
            second = set(s3.keys)

        assert first.isdisjoint(second)

    @pytest.mark.asyncio
    async def test_plan_uploads_nothing(self, backup_settings, resolver):
        s3 = _s3()
        pipeline = BackupPipeline(backup_settings, InvocationContext(s3=s3), resolver=resolver)

        snapshot = await pipeline.plan(NOW)

        assert snapshot.run_key == "2024-05-01-13-00-02"
        assert set(snapshot.discovered_files) == EXPECTED_FILES
        s3.put_object.assert_not_called()
        resolver.resolve_private_addresses.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_run_backup_helper(self, backup_settings):
        with patch.object(BackupPipeline, "run", new=AsyncMock(return_value="summary")) as run:
            result = await run_backup(backup_settings, InvocationContext(s3=MagicMock()), NOW)
        assert result == "summary"
        run.assert_awaited_once_with(NOW)
