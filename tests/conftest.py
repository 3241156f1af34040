"""pytest configuration for spotkeeper tests."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

from spotkeeper.config import BackupSettings, ConsoleSettings, DnsSettings
from spotkeeper.fleet import Instance


def pytest_configure(config):
    config.addinivalue_line(
        "markers", "asyncio: mark test as async"
    )


@pytest.fixture
def console_settings():
    return ConsoleSettings(
        scaling_group_name="mc-asg",
        port=25575,
        credential="hunter2",
        timeout=0.5,
        idle_timeout=0.05,
    )


@pytest.fixture
def backup_root(tmp_path):
    """A small world tree on the 'shared filesystem'."""
    root = tmp_path / "efs"
    (root / "world" / "region").mkdir(parents=True)
    (root / "world" / "level.dat").write_bytes(b"level")
    (root / "world" / "region" / "r.0.0.mca").write_bytes(b"\x00" * 64)
    (root / "world" / "region" / "r.0.1.mca").write_bytes(b"\x01" * 64)
    (root / "world_nether" / "DIM-1" / "region").mkdir(parents=True)
    (root / "world_nether" / "DIM-1" / "region" / "r.-1.0.mca").write_bytes(b"nether")
    (root / "server.properties").write_text("motd=hello\n")
    return root


@pytest.fixture
def backup_settings(backup_root, console_settings):
    return BackupSettings(
        bucket_name="mc-backups",
        mount_path=backup_root,
        directories=("world", "world_nether", "server.properties"),
        console=console_settings,
        concurrency=3,
    )


@pytest.fixture
def dns_settings():
    return DnsSettings(zone_id="Z123EXAMPLE", record_name="mc.example.com")


@pytest.fixture
def resolver():
    """Fleet resolver stub with one live instance."""
    fake = MagicMock()
    fake.resolve_private_addresses = AsyncMock(
        return_value=[Instance("i-001", private_address="10.0.1.5")]
    )
    fake.resolve_public_address = AsyncMock(
        return_value=Instance("i-001", "10.0.1.5", "203.0.113.5")
    )
    return fake
