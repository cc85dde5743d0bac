"""Spot price lookups with in-memory caching."""

import logging
import threading
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from spotshell.providers.aws.errors import call_aws

logger = logging.getLogger(__name__)


class PricingCache:
    """In-memory cache for pricing data with time-based expiration.

    Parameters
    ----------
    ttl_minutes : int, default=10
        Time-to-live for cached entries in minutes

    Notes
    -----
    Spot prices move, so entries expire quickly. Access is guarded by a lock
    because the session watcher may query prices from its own thread.
    """

    def __init__(self, ttl_minutes: int = 10) -> None:
        self._cache: dict[str, tuple[Any, datetime]] = {}
        self._ttl = timedelta(minutes=ttl_minutes)
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            if key in self._cache:
                value, timestamp = self._cache[key]

                if datetime.now() - timestamp < self._ttl:
                    return value

                del self._cache[key]

            return None

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            self._cache[key] = (value, datetime.now())


class SpotPriceService:
    """Current spot prices from the EC2 spot price history.

    Parameters
    ----------
    ec2_client : Any
        Boto3 EC2 client
    region : str
        AWS region name
    cache : PricingCache | None
        Cache instance; a fresh one is created if omitted
    """

    def __init__(
        self, ec2_client: Any, region: str, cache: PricingCache | None = None
    ) -> None:
        self.ec2_client = ec2_client
        self.region = region
        self.cache = cache or PricingCache()

    def get_spot_price(self, instance_type: str) -> float | None:
        """Return the lowest current Linux spot price across availability zones.

        Parameters
        ----------
        instance_type : str
            EC2 instance type

        Returns
        -------
        float | None
            USD per hour, or None if no price history is published
        """
        cache_key = f"{self.region}:{instance_type}"
        cached = self.cache.get(cache_key)
        if cached is not None:
            return cached

        response = call_aws(
            self.ec2_client,
            "describe_spot_price_history",
            InstanceTypes=[instance_type],
            ProductDescriptions=["Linux/UNIX"],
            StartTime=datetime.now(timezone.utc),
            MaxResults=20,
        )
        prices = [
            float(entry["SpotPrice"]) for entry in response.get("SpotPriceHistory", [])
        ]

        if not prices:
            logger.debug("No spot price history for %s in %s", instance_type, self.region)
            return None

        price = min(prices)
        self.cache.set(cache_key, price)
        return price
