"""Environment configuration for spotkeeper components.

Every component reads its settings once per invocation with a ``load_*``
function.  All required keys are checked together so that a single
:class:`ConfigurationError` names everything that is missing, before any
network call is attempted.

The names used by earlier deployments (``ASG_NAME``, ``RCON_PORT``,
``RCON_PASSWORD``, ``EFS_MOUNT_PATH``, ``BACKUP_FILES``, ``HOSTED_ZONE_ID``)
are accepted as fallbacks.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping

DEFAULT_CONSOLE_TIMEOUT = 5.0
DEFAULT_CONSOLE_IDLE_TIMEOUT = 1.0
DEFAULT_BACKUP_CONCURRENCY = 6
DEFAULT_STORAGE_CLASS = "GLACIER"
DEFAULT_INTERVAL_MINUTES = 60
DEFAULT_DNS_TTL = 60

_FALLBACKS: dict[str, str] = {
    "SCALING_GROUP_NAME": "ASG_NAME",
    "CONSOLE_PORT": "RCON_PORT",
    "CONSOLE_CREDENTIAL": "RCON_PASSWORD",
    "SHARED_FS_MOUNT_PATH": "EFS_MOUNT_PATH",
    "BACKUP_DIRECTORIES": "BACKUP_FILES",
    "DNS_ZONE_ID": "HOSTED_ZONE_ID",
}


class ConfigurationError(Exception):
    """Raised when required configuration is missing or malformed."""


@dataclass(frozen=True)
class ConsoleSettings:
    """Where and how to reach the game server's remote console."""

    scaling_group_name: str
    port: int
    credential: str = field(repr=False)
    timeout: float = DEFAULT_CONSOLE_TIMEOUT
    idle_timeout: float = DEFAULT_CONSOLE_IDLE_TIMEOUT


@dataclass(frozen=True)
class BackupSettings:
    """Backup pipeline configuration."""

    bucket_name: str
    mount_path: Path
    directories: tuple[str, ...]
    console: ConsoleSettings
    concurrency: int = DEFAULT_BACKUP_CONCURRENCY
    storage_class: str = DEFAULT_STORAGE_CLASS
    interval_minutes: int = DEFAULT_INTERVAL_MINUTES


@dataclass(frozen=True)
class DnsSettings:
    """Target zone and record for launch-time DNS updates."""

    zone_id: str
    record_name: str
    ttl: int = DEFAULT_DNS_TTL


# ──────────────────────────────────────────────────────────────────
# Loaders
# ──────────────────────────────────────────────────────────────────

def load_console_settings(env: Mapping[str, str] | None = None) -> ConsoleSettings:
    """Read console settings (``SCALING_GROUP_NAME``, ``CONSOLE_PORT``,
    ``CONSOLE_CREDENTIAL``)."""
    reader = _EnvReader(env)
    group = reader.required("SCALING_GROUP_NAME")
    port = reader.required("CONSOLE_PORT")
    credential = reader.required("CONSOLE_CREDENTIAL")
    reader.raise_missing()

    return ConsoleSettings(
        scaling_group_name=group,
        port=_parse_port(port),
        credential=credential,
        timeout=reader.number("CONSOLE_TIMEOUT", DEFAULT_CONSOLE_TIMEOUT),
        idle_timeout=reader.number("CONSOLE_IDLE_TIMEOUT", DEFAULT_CONSOLE_IDLE_TIMEOUT),
    )


def load_backup_settings(env: Mapping[str, str] | None = None) -> BackupSettings:
    """Read backup settings, including the console settings used for notices."""
    reader = _EnvReader(env)
    bucket = reader.required("BACKUP_BUCKET_NAME")
    mount = reader.required("SHARED_FS_MOUNT_PATH")
    directories = reader.required("BACKUP_DIRECTORIES", allow_empty=True)
    # Console keys are required for the start and finish notices.
    for key in ("SCALING_GROUP_NAME", "CONSOLE_PORT", "CONSOLE_CREDENTIAL"):
        reader.required(key)
    reader.raise_missing()

    concurrency = int(reader.number("BACKUP_CONCURRENCY", DEFAULT_BACKUP_CONCURRENCY, integer=True))
    if concurrency < 1:
        raise ConfigurationError(f"BACKUP_CONCURRENCY must be at least 1, got {concurrency}")
    interval = int(reader.number("BACKUP_INTERVAL_MINUTES", DEFAULT_INTERVAL_MINUTES, integer=True))
    if interval < 1:
        raise ConfigurationError(f"BACKUP_INTERVAL_MINUTES must be at least 1, got {interval}")

    return BackupSettings(
        bucket_name=bucket,
        mount_path=Path(mount),
        directories=parse_directories(directories),
        console=load_console_settings(env),
        concurrency=concurrency,
        storage_class=reader.optional("BACKUP_STORAGE_CLASS", DEFAULT_STORAGE_CLASS),
        interval_minutes=interval,
    )


def load_dns_settings(env: Mapping[str, str] | None = None) -> DnsSettings:
    """Read DNS settings (``DNS_ZONE_ID``, ``DNS_RECORD_NAME``)."""
    reader = _EnvReader(env)
    zone_id = reader.required("DNS_ZONE_ID")
    record_name = reader.required("DNS_RECORD_NAME")
    reader.raise_missing()

    return DnsSettings(
        zone_id=zone_id,
        record_name=record_name,
        ttl=int(reader.number("DNS_TTL", DEFAULT_DNS_TTL, integer=True)),
    )


def parse_directories(raw: str) -> tuple[str, ...]:
    """Split a comma-separated directory list, dropping blanks."""
    return tuple(part.strip() for part in raw.split(",") if part.strip())


def log_level(env: Mapping[str, str] | None = None) -> str:
    """Return the configured log level name (``LOG_LEVEL``, default INFO)."""
    source = os.environ if env is None else env
    return source.get("LOG_LEVEL", "INFO").upper()


# ──────────────────────────────────────────────────────────────────
# Helpers
# ──────────────────────────────────────────────────────────────────

class _EnvReader:
    """Collects missing keys instead of failing on the first one."""

    def __init__(self, env: Mapping[str, str] | None) -> None:
        self._env = os.environ if env is None else env
        self._missing: list[str] = []

    def _lookup(self, key: str) -> str | None:
        value = self._env.get(key)
        if value is None and key in _FALLBACKS:
            value = self._env.get(_FALLBACKS[key])
        return value

    def required(self, key: str, allow_empty: bool = False) -> str:
        value = self._lookup(key)
        if value is None or (not allow_empty and not value.strip()):
            if key not in self._missing:
                self._missing.append(key)
            return ""
        return value

    def optional(self, key: str, default: str) -> str:
        value = self._lookup(key)
        return value if value else default

    def number(self, key: str, default: float, integer: bool = False) -> float:
        value = self._lookup(key)
        if not value:
            return default
        try:
            return int(value) if integer else float(value)
        except ValueError:
            raise ConfigurationError(f"{key} must be numeric, got {value!r}") from None

    def raise_missing(self) -> None:
        if self._missing:
            raise ConfigurationError(
                "Missing required configuration: " + ", ".join(self._missing)
            )


def _parse_port(raw: str) -> int:
    try:
        port = int(raw)
    except ValueError:
        raise ConfigurationError(f"CONSOLE_PORT must be an integer, got {raw!r}") from None
    if not 0 < port < 65536:
        raise ConfigurationError(f"CONSOLE_PORT out of range: {port}")
    return port
