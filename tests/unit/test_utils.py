"""Tests for spotshell.utils and the text templates."""

import os
import stat
from pathlib import Path

import pytest
import yaml

from spotshell.core.exceptions import ValidationError
from spotshell.templates import CONFIG_TEMPLATE, render_user_data
from spotshell.utils import (
    atomic_file_write,
    format_duration,
    log_and_print_error,
    validate_port,
    validate_resource_name,
)


@pytest.mark.parametrize(
    ("seconds", "expected"),
    [(0, "0s"), (3, "3s"), (123, "2m 03s"), (3723, "1h 02m 03s"), (-5, "0s"), (59.9, "59s")],
)
def test_format_duration(seconds: float, expected: str) -> None:
    assert format_duration(seconds) == expected


@pytest.mark.parametrize("port", [1, 22, 65535])
def test_validate_port_accepts(port: int) -> None:
    validate_port(port)


@pytest.mark.parametrize("port", [0, 65536, -1, "22", True, None])
def test_validate_port_rejects(port) -> None:
    with pytest.raises(ValidationError, match="Port must be between"):
        validate_port(port)


@pytest.mark.parametrize("name", ["spotshell-admin-key", "a", "role_1", "x" * 128])
def test_validate_resource_name_accepts(name: str) -> None:
    assert validate_resource_name(name) == name


@pytest.mark.parametrize("name", ["", "../key", "a b", "name;rm", "x" * 129, "key\n", None, 5])
def test_validate_resource_name_rejects(name) -> None:
    with pytest.raises(ValidationError, match="Invalid key name"):
        validate_resource_name(name, "key name")


def test_atomic_file_write_sets_mode_and_cleans_up(tmp_path: Path) -> None:
    """Test the target gets its final mode and no temp or lock file remains."""
    target = tmp_path / "secret"

    atomic_file_write(target, "payload", mode=0o600)

    assert target.read_text() == "payload"
    assert stat.S_IMODE(target.stat().st_mode) == 0o600
    assert sorted(p.name for p in tmp_path.iterdir()) == ["secret"]


def test_atomic_file_write_never_reuses_a_stale_temp_file(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    """Test content is only written to a temp file created with the target mode."""
    target = tmp_path / "secret"
    stale = tmp_path / ".secret.tmp"
    stale.write_text("left over")
    stale.chmod(0o666)
    modes = []
    real_fdopen = os.fdopen

    def recording_fdopen(fd, *args, **kwargs):
        modes.append(stat.S_IMODE(os.fstat(fd).st_mode))
        return real_fdopen(fd, *args, **kwargs)

    monkeypatch.setattr("spotshell.utils.os.fdopen", recording_fdopen)

    atomic_file_write(target, "payload", mode=0o600)

    assert modes and all(mode & 0o077 == 0 for mode in modes)
    assert target.read_text() == "payload"
    assert not stale.exists()


def test_atomic_file_write_replaces_content(tmp_path: Path) -> None:
    target = tmp_path / "file"
    target.write_text("old")

    atomic_file_write(target, "new")

    assert target.read_text() == "new"


def test_log_and_print_error(capsys) -> None:
    log_and_print_error("bad %s", "thing")

    assert capsys.readouterr().err == "Error: bad thing\n"


def test_render_user_data() -> None:
    """Test the boot script carries the grace period and check interval."""
    script = render_user_data(600, check_interval=15)

    assert script.startswith("#!/bin/bash\n")
    assert "-ge 600 ]" in script
    assert "sleep 15" in script
    assert "shutdown -h now" in script
    assert "{" + "grace_seconds}" not in script


def test_config_template_is_valid_yaml() -> None:
    data = yaml.safe_load(CONFIG_TEMPLATE)

    assert data["vars"]["prefix"] == "spotshell-admin"
    assert "max_cost" not in data["defaults"]
    assert "# max_cost: 0.08" in CONFIG_TEMPLATE
    assert data["defaults"]["key_name"] == "${prefix}-key"
