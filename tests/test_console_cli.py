"""Tests for ``python -m spotkeeper.console``."""

from __future__ import annotations

import sys
from unittest.mock import AsyncMock, patch

import pytest

from spotkeeper.console import __main__ as cli
from spotkeeper.fleet import NoInstancesError


@pytest.fixture
def console_env(monkeypatch):
    monkeypatch.setenv("SCALING_GROUP_NAME", "mc-asg")
    monkeypatch.setenv("CONSOLE_PORT", "25575")
    monkeypatch.setenv("CONSOLE_CREDENTIAL", "hunter2")


def test_sends_joined_command(console_env, capsys, monkeypatch):
    monkeypatch.setattr(sys, "argv", ["spotkeeper.console", "say", "hello"])
    with patch.object(cli, "resolve_console_host", new=AsyncMock(return_value="10.0.1.5")), \
            patch.object(cli, "send_command", new=AsyncMock(return_value="ok")) as send:
        cli.main()

    assert capsys.readouterr().out.strip() == "ok"
    assert send.await_args.args[:4] == ("10.0.1.5", 25575, "hunter2", "say hello")


def test_resolution_failure_exits_nonzero(console_env, capsys, monkeypatch):
    monkeypatch.setattr(sys, "argv", ["spotkeeper.console", "list"])
    failing = AsyncMock(side_effect=NoInstancesError("No instances found in scaling group: mc-asg"))
    with patch.object(cli, "resolve_console_host", new=failing):
        with pytest.raises(SystemExit) as info:
            cli.main()

    assert info.value.code == 1
    assert "No instances" in capsys.readouterr().err
