"""Signal handling that routes interrupts into the active session."""

from __future__ import annotations

import signal
import threading
import types
from typing import Protocol

from spotshell.constants import EXIT_SIGTERM


class SignalHandler(Protocol):
    """Protocol for the object that owns the live session."""

    def handle_signal(self, signum: int, frame: types.FrameType | None = None) -> None:
        """React to a termination signal."""
        ...


class CleanupInstanceManager:
    """Thread-safe holder of the signal handler target.

    Uses a single lock to protect both getting and checking the instance,
    preventing races between signal handlers and teardown.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._instance: SignalHandler | None = None

    def set(self, instance: SignalHandler | None) -> None:
        with self._lock:
            self._instance = instance

    def get(self) -> SignalHandler | None:
        with self._lock:
            return self._instance

    def dispatch(self, signum: int, frame: types.FrameType | None) -> None:
        """Deliver a signal to the current target, if any.

        Parameters
        ----------
        signum : int
            Signal number
        frame : types.FrameType | None
            Signal frame

        Notes
        -----
        The target is read under the lock but invoked outside it, because the
        target may raise to unwind the main thread.
        """
        with self._lock:
            instance = self._instance

        if instance is not None:
            instance.handle_signal(signum, frame)
        elif signum == signal.SIGINT:
            raise KeyboardInterrupt
        else:
            raise SystemExit(EXIT_SIGTERM)


_cleanup_manager = CleanupInstanceManager()


def setup_signal_handlers() -> None:
    """Route SIGINT and SIGTERM to the registered session owner.

    With no owner registered, SIGINT behaves like the default Ctrl+C and
    SIGTERM exits with status 143.
    """

    def handler(signum: int, frame: types.FrameType | None) -> None:
        _cleanup_manager.dispatch(signum, frame)

    signal.signal(signal.SIGINT, handler)
    signal.signal(signal.SIGTERM, handler)


def set_cleanup_instance(instance: SignalHandler | None) -> None:
    """Set the object that handles termination signals."""
    _cleanup_manager.set(instance)


def get_cleanup_instance() -> SignalHandler | None:
    return _cleanup_manager.get()
