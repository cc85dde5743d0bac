"""Tests for the prerequisite checks."""

import os
import stat
from pathlib import Path

import pytest
from fakes.fake_provider import FakeProviderClient

from spotshell.core.exceptions import ValidationError
from spotshell.core.prerequisites import PrerequisiteChecker
from spotshell.providers.exceptions import ProviderCredentialsError, ProviderPermanentError


def has_ssh(name: str) -> str:
    return f"/usr/bin/{name}"


def test_all_checks_pass_and_key_dir_is_created(fake_provider, tmp_path: Path) -> None:
    """Test a healthy environment passes and the key directory is made private."""
    key_dir = tmp_path / "keys"

    report = PrerequisiteChecker(fake_provider, key_dir, which=has_ssh).check()

    assert report.ok
    assert report.account == "123456789012"
    assert set(report.passed) == {
        "region",
        "credentials",
        "ec2-permissions",
        "default-vpc",
        "ssh-client",
        "key-directory",
    }
    assert stat.S_IMODE(key_dir.stat().st_mode) == 0o700


def test_loose_key_dir_is_restricted(fake_provider, tmp_path: Path) -> None:
    key_dir = tmp_path / "keys"
    key_dir.mkdir()
    os.chmod(key_dir, 0o755)

    PrerequisiteChecker(fake_provider, key_dir, which=has_ssh).check()

    assert stat.S_IMODE(key_dir.stat().st_mode) == 0o700


def test_report_only_mode_changes_nothing(fake_provider, tmp_path: Path) -> None:
    """Test repair=False leaves the filesystem alone."""
    missing = tmp_path / "missing"
    loose = tmp_path / "loose"
    loose.mkdir()
    os.chmod(loose, 0o755)

    PrerequisiteChecker(fake_provider, missing, which=has_ssh, repair=False).check()
    PrerequisiteChecker(fake_provider, loose, which=has_ssh, repair=False).check()

    assert not missing.exists()
    assert stat.S_IMODE(loose.stat().st_mode) == 0o755


def test_all_failures_are_reported_together(tmp_path: Path) -> None:
    """Test every failing check appears in one error."""
    provider = FakeProviderClient(region="nowhere")
    provider.fail("get_caller_identity", ProviderCredentialsError("none"))
    key_file = tmp_path / "keys"
    key_file.write_text("not a directory")

    with pytest.raises(ValidationError) as exc_info:
        PrerequisiteChecker(provider, key_file, which=lambda name: None).check()

    message = str(exc_info.value)
    for name in ("region", "credentials", "ssh-client", "key-directory"):
        assert f"- {name}:" in message
    assert "get_default_vpc_id" not in [call[0] for call in provider.calls]


def test_region_with_trailing_newline_is_rejected(tmp_path: Path) -> None:
    provider = FakeProviderClient(region="us-east-1\n")

    with pytest.raises(ValidationError, match="not a valid region name"):
        PrerequisiteChecker(provider, tmp_path, which=lambda name: "/usr/bin/ssh").check()


def test_missing_default_vpc_fails(fake_provider, tmp_path: Path) -> None:
    fake_provider.fail(
        "get_default_vpc_id", ProviderPermanentError("no vpc", error_code="NoDefaultVpc")
    )

    with pytest.raises(ValidationError, match="default-vpc"):
        PrerequisiteChecker(fake_provider, tmp_path, which=has_ssh).check()


def test_denied_describe_fails(fake_provider, tmp_path: Path, monkeypatch) -> None:
    monkeypatch.setattr(fake_provider, "can_describe_instances", lambda: False)

    with pytest.raises(ValidationError, match="ec2-permissions"):
        PrerequisiteChecker(fake_provider, tmp_path, which=has_ssh).check()
