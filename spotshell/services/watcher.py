"""Advisory background watch over a running session instance."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable

from spotshell.constants import SECONDS_PER_HOUR, WATCH_INTERVAL_SECONDS
from spotshell.core.interfaces import ProviderClient
from spotshell.core.models import InstanceState
from spotshell.providers.exceptions import ProviderError
from spotshell.utils import format_duration

logger = logging.getLogger(__name__)


class SessionWatcher(threading.Thread):
    """Periodically report instance health and running cost.

    The watcher never changes provider state; it only logs, and it stops as
    soon as ``stop()`` is called.

    Parameters
    ----------
    provider : ProviderClient
        Provider client
    instance_id : str
        Instance to watch
    hourly_price : float
        Spot price used for the running cost estimate
    max_cost : float
        Cost ceiling, reported when the observed price exceeds it
    interval : float
        Seconds between checks
    """

    def __init__(
        self,
        provider: ProviderClient,
        instance_id: str,
        hourly_price: float,
        max_cost: float,
        interval: float = WATCH_INTERVAL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        super().__init__(name=f"watch-{instance_id}", daemon=True)
        self.provider = provider
        self.instance_id = instance_id
        self.hourly_price = hourly_price
        self.max_cost = max_cost
        self.interval = interval
        self.clock = clock
        self.started_at = clock()
        self.interrupted = False
        self._stop_event = threading.Event()

    def stop(self, timeout: float | None = None) -> None:
        self._stop_event.set()
        if self.is_alive():
            self.join(timeout)

    def run(self) -> None:
        while not self._stop_event.wait(self.interval):
            if not self.check():
                return

    def check(self) -> bool:
        """Run one check.

        Returns
        -------
        bool
            False once the instance is gone and watching is pointless
        """
        elapsed = self.clock() - self.started_at
        estimate = self.hourly_price * elapsed / SECONDS_PER_HOUR

        try:
            instance = self.provider.describe_instance(self.instance_id)
        except ProviderError as e:
            logger.warning("Could not check instance %s: %s", self.instance_id, e)
            return True

        if instance is None or instance.state == InstanceState.TERMINATED:
            self.interrupted = True
            logger.warning(
                "Instance %s is no longer running (spot interruption or shutdown)",
                self.instance_id,
            )
            return False

        try:
            price = self.provider.get_spot_price(instance.instance_type or "")
        except ProviderError as e:
            logger.debug("Spot price check failed: %s", e)
            price = None

        if price is not None and price > self.max_cost:
            logger.warning(
                "Spot price rose to $%.4f/hour, above the $%.4f/hour ceiling",
                price,
                self.max_cost,
            )

        logger.debug(
            "Session running for %s, estimated cost $%.4f",
            format_duration(elapsed),
            estimate,
        )
        return True
