"""Bounded polling with exponential backoff."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from typing import TypeVar

from spotshell.constants import (
    POLL_BACKOFF_FACTOR,
    POLL_INTERVAL_SECONDS,
    POLL_MAX_INTERVAL_SECONDS,
)
from spotshell.core.exceptions import ReadinessTimeoutError, SessionCancelled

logger = logging.getLogger(__name__)

T = TypeVar("T")


def poll_until(
    probe: Callable[[], T | None],
    *,
    description: str,
    ceiling: float,
    interval: float = POLL_INTERVAL_SECONDS,
    backoff: float = POLL_BACKOFF_FACTOR,
    max_interval: float = POLL_MAX_INTERVAL_SECONDS,
    cancel_event: threading.Event | None = None,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Call ``probe`` until it returns a truthy value or the ceiling passes.

    Parameters
    ----------
    probe : Callable[[], T | None]
        Zero-argument check. A falsy result means "not ready yet"; exceptions
        are fatal and propagate unchanged.
    description : str
        What is being awaited, used in logs and the timeout error
    ceiling : float
        Maximum total wait in seconds
    interval : float
        Delay after the first failed probe
    backoff : float
        Factor applied to the delay after every failed probe
    max_interval : float
        Upper bound for a single delay
    cancel_event : threading.Event | None
        When set, waiting stops and ``SessionCancelled`` is raised
    clock : Callable[[], float]
        Monotonic clock, injectable for tests
    sleep : Callable[[float], None]
        Sleep function used when no ``cancel_event`` is given

    Returns
    -------
    T
        First truthy probe result

    Raises
    ------
    ReadinessTimeoutError
        If the ceiling passes before the probe succeeds
    SessionCancelled
        If ``cancel_event`` is set while waiting
    """
    start = clock()
    delay = interval
    attempts = 0

    while True:
        if cancel_event is not None and cancel_event.is_set():
            raise SessionCancelled()

        attempts += 1
        result = probe()
        if result:
            logger.debug("%s ready after %d attempts", description, attempts)
            return result

        elapsed = clock() - start
        remaining = ceiling - elapsed
        if remaining <= 0:
            raise ReadinessTimeoutError(description, ceiling, attempts)

        wait = min(delay, remaining)
        logger.debug(
            "Waiting for %s (attempt %d, next check in %.1fs)", description, attempts, wait
        )
        if cancel_event is not None:
            if cancel_event.wait(wait):
                raise SessionCancelled()
        else:
            sleep(wait)

        delay = min(delay * backoff, max_interval)
