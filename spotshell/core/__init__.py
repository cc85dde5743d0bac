"""Core spotshell functionality."""

from __future__ import annotations

from spotshell.core.interfaces import ProviderClient
from spotshell.core.signals import (
    get_cleanup_instance,
    set_cleanup_instance,
    setup_signal_handlers,
)

__all__ = [
    "ProviderClient",
    "setup_signal_handlers",
    "set_cleanup_instance",
    "get_cleanup_instance",
]
