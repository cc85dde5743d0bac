"""Resolution of the caller's public IPv4 address."""

from __future__ import annotations

import ipaddress
import logging

import requests

from spotshell.constants import ADDRESS_LOOKUP_TIMEOUT_SECONDS
from spotshell.core.exceptions import AddressResolutionError

logger = logging.getLogger(__name__)


def parse_public_address(text: str) -> str:
    """Validate a service response as a public IPv4 address.

    Parameters
    ----------
    text : str
        Raw response body

    Returns
    -------
    str
        Normalized dotted-quad address

    Raises
    ------
    ValueError
        If the text is not a globally routable IPv4 address
    """
    address = ipaddress.IPv4Address(text.strip())
    if not address.is_global:
        raise ValueError(f"{address} is not a public address")
    return str(address)


class PublicAddressResolver:
    """Ask a list of "what is my IP" services until one gives a valid answer.

    Parameters
    ----------
    services : list[str]
        Service URLs tried in order; each must return the address as plain text
    timeout : float
        Per-request timeout in seconds
    session : requests.Session | None
        HTTP session, injectable for tests
    """

    def __init__(
        self,
        services: list[str],
        timeout: float = ADDRESS_LOOKUP_TIMEOUT_SECONDS,
        session: requests.Session | None = None,
    ) -> None:
        self.services = list(services)
        self.timeout = timeout
        self.session = session or requests.Session()

    def resolve(self) -> str:
        """Return the current public address.

        Raises
        ------
        AddressResolutionError
            If every service failed or returned an invalid address
        """
        errors = []

        for url in self.services:
            try:
                response = self.session.get(url, timeout=self.timeout)
                response.raise_for_status()
                address = parse_public_address(response.text)
            except requests.RequestException as e:
                logger.debug("Address service %s failed: %s", url, e)
                errors.append(f"{url}: {e.__class__.__name__}")
                continue
            except ValueError as e:
                logger.debug("Address service %s returned junk: %s", url, e)
                errors.append(f"{url}: invalid response")
                continue

            logger.info("Public address: %s (via %s)", address, url)
            return address

        raise AddressResolutionError(
            "Cannot determine public IP address; refusing to open access without it "
            f"({'; '.join(errors) or 'no services configured'})"
        )
