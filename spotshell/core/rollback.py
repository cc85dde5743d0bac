"""Compensating actions for partially provisioned sessions."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass

from spotshell.core.exceptions import RollbackStepError
from spotshell.providers.exceptions import ProviderNotFoundError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RollbackAction:
    """One reversal of a forward provisioning step.

    Parameters
    ----------
    description : str
        Human-readable reversal, e.g. ``"cancel spot request"``
    forward : str
        Name of the forward operation the reversal compensates
    resource_id : str | None
        Identifier of the affected resource, when known
    undo : Callable[[], None]
        Idempotent reversal; a missing resource counts as success
    """

    description: str
    forward: str
    resource_id: str | None
    undo: Callable[[], None]


class RollbackStack:
    """Append-only list of reversal actions executed strictly LIFO."""

    def __init__(self) -> None:
        self._actions: list[RollbackAction] = []
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._actions)

    @property
    def actions(self) -> tuple[RollbackAction, ...]:
        with self._lock:
            return tuple(self._actions)

    def push(self, action: RollbackAction) -> None:
        with self._lock:
            self._actions.append(action)
        logger.debug("Registered rollback: %s %s", action.description, action.resource_id or "")

    def clear(self) -> None:
        with self._lock:
            self._actions.clear()

    def unwind(self) -> list[RollbackStepError]:
        """Execute every pending reversal, newest first, exactly once.

        Failures of individual reversals are logged as warnings and unwinding
        continues.

        Returns
        -------
        list[RollbackStepError]
            One error per reversal that failed
        """
        with self._lock:
            pending = list(self._actions)
            self._actions.clear()

        errors: list[RollbackStepError] = []

        for index in range(len(pending) - 1, -1, -1):
            action = pending[index]
            target = f" {action.resource_id}" if action.resource_id else ""
            logger.info("Rolling back: %s%s", action.description, target)
            try:
                action.undo()
            except ProviderNotFoundError:
                logger.debug("%s%s: already gone", action.description, target)
            except Exception as e:  # noqa: BLE001
                error = RollbackStepError(f"{action.description}{target} failed: {e}")
                logger.warning("%s", error)
                errors.append(error)

        return errors
