"""Tests for signal routing."""

import signal
from unittest.mock import MagicMock

import pytest

from spotshell.core.signals import (
    CleanupInstanceManager,
    get_cleanup_instance,
    set_cleanup_instance,
)


def test_dispatch_delivers_to_registered_target() -> None:
    """Test signals reach the registered session owner."""
    manager = CleanupInstanceManager()
    target = MagicMock()
    manager.set(target)

    manager.dispatch(signal.SIGTERM, None)

    target.handle_signal.assert_called_once_with(signal.SIGTERM, None)


def test_dispatch_without_target_sigint_is_keyboard_interrupt() -> None:
    with pytest.raises(KeyboardInterrupt):
        CleanupInstanceManager().dispatch(signal.SIGINT, None)


def test_dispatch_without_target_sigterm_exits_143() -> None:
    with pytest.raises(SystemExit) as exc_info:
        CleanupInstanceManager().dispatch(signal.SIGTERM, None)

    assert exc_info.value.code == 143


def test_target_exceptions_propagate() -> None:
    """Test a target raising to unwind the main thread is not swallowed."""
    manager = CleanupInstanceManager()
    target = MagicMock()
    target.handle_signal.side_effect = RuntimeError("unwind")
    manager.set(target)

    with pytest.raises(RuntimeError, match="unwind"):
        manager.dispatch(signal.SIGINT, None)


def test_module_level_registration() -> None:
    target = MagicMock()

    set_cleanup_instance(target)
    try:
        assert get_cleanup_instance() is target
    finally:
        set_cleanup_instance(None)

    assert get_cleanup_instance() is None
