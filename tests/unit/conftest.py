"""Pytest configuration and fixtures for spotshell tests."""

import os
import sys
from collections.abc import Generator
from pathlib import Path
from typing import Any

import pytest
import yaml

tests_root = Path(__file__).parent.parent
if str(tests_root) not in sys.path:
    sys.path.insert(0, str(tests_root))

from fakes.fake_provider import FakeProviderClient  # noqa: E402

from spotshell.core.config import ConfigLoader  # noqa: E402

CALLER_ADDRESS = "8.8.8.8"


@pytest.fixture(autouse=True)
def fast_key_generation(monkeypatch: pytest.MonkeyPatch) -> None:
    """Generate 2048-bit keys in tests; 4096-bit generation is slow."""
    monkeypatch.setattr("spotshell.services.keys.RSA_KEY_BITS", 2048)


@pytest.fixture(autouse=True)
def clean_spotshell_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("SPOTSHELL_CONFIG", raising=False)
    monkeypatch.delenv("SPOTSHELL_DEBUG", raising=False)


@pytest.fixture
def aws_credentials() -> Generator[None, None, None]:
    """Fixture to set AWS credentials for testing with proper cleanup.

    Sets mock AWS credentials in environment variables for the duration of the test,
    then restores the original environment state.

    Yields
    ------
    None
        Control back to test after setting credentials
    """
    names = ("AWS_ACCESS_KEY_ID", "AWS_SECRET_ACCESS_KEY", "AWS_SECURITY_TOKEN",
             "AWS_SESSION_TOKEN", "AWS_DEFAULT_REGION")
    old = {name: os.environ.get(name) for name in names}

    os.environ["AWS_ACCESS_KEY_ID"] = "testing"
    os.environ["AWS_SECRET_ACCESS_KEY"] = "testing"
    os.environ["AWS_SECURITY_TOKEN"] = "testing"
    os.environ["AWS_SESSION_TOKEN"] = "testing"
    os.environ["AWS_DEFAULT_REGION"] = "us-east-1"

    yield

    for name, value in old.items():
        if value is not None:
            os.environ[name] = value
        else:
            os.environ.pop(name, None)


@pytest.fixture
def config_file(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point SPOTSHELL_CONFIG at a temporary file path."""
    config_path = tmp_path / "spotshell.yaml"
    monkeypatch.setenv("SPOTSHELL_CONFIG", str(config_path))
    return config_path


@pytest.fixture
def write_config(config_file: Path):
    """Helper fixture to write config data to file.

    Returns
    -------
    callable
        Function that takes config_data dict and writes to file
    """

    def _write(config_data: dict[str, Any]) -> None:
        with open(config_file, "w") as f:
            yaml.dump(config_data, f)

    return _write


@pytest.fixture
def session_config(tmp_path: Path) -> dict[str, Any]:
    """Effective configuration with fast polling and private directories."""
    config = ConfigLoader().BUILT_IN_DEFAULTS
    config.update(
        {
            "state_dir": str(tmp_path / "state"),
            "key_dir": str(tmp_path / "keys"),
            "spot_fulfillment_timeout": 1.0,
            "instance_running_timeout": 1.0,
            "ssh_ready_timeout": 1.0,
            "poll_interval": 0.01,
            "poll_backoff": 1.0,
            "poll_max_interval": 0.01,
            "watch_interval": 60,
        }
    )
    return config


@pytest.fixture
def fake_provider() -> FakeProviderClient:
    return FakeProviderClient()
