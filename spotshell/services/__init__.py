"""Provider-agnostic services (access, keys, identity, SSH)."""

from __future__ import annotations

from spotshell.services.access import AccessController
from spotshell.services.address import PublicAddressResolver
from spotshell.services.identity import IdentityProvisioner
from spotshell.services.keys import KeyManager
from spotshell.services.ssh import InteractiveSession, SSHReadinessProbe
from spotshell.services.watcher import SessionWatcher

__all__ = [
    "AccessController",
    "PublicAddressResolver",
    "IdentityProvisioner",
    "KeyManager",
    "InteractiveSession",
    "SSHReadinessProbe",
    "SessionWatcher",
]
