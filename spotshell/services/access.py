"""Reconciliation of the admin access group to a single address."""

from __future__ import annotations

import logging

from spotshell.core.exceptions import ValidationError
from spotshell.core.interfaces import ProviderClient
from spotshell.core.models import AccessRule, IngressPermission
from spotshell.providers.exceptions import ProviderPermanentError
from spotshell.services.address import PublicAddressResolver, parse_public_address
from spotshell.utils import validate_port, validate_resource_name

logger = logging.getLogger(__name__)

GROUP_DESCRIPTION = "Admin SSH access for ephemeral spotshell instances"


class AccessController:
    """Keep exactly one ingress rule on the admin port, for the caller's address.

    Parameters
    ----------
    provider : ProviderClient
        Provider client for the target region
    group_name : str
        Name of the shared access group
    port : int
        Admin port
    resolver : PublicAddressResolver | None
        Address resolver used when ``reconcile`` is not given an address
    """

    def __init__(
        self,
        provider: ProviderClient,
        group_name: str,
        port: int,
        resolver: PublicAddressResolver | None = None,
    ) -> None:
        self.provider = provider
        self.group_name = validate_resource_name(group_name, "security group name")
        validate_port(port)
        self.port = port
        self.resolver = resolver

    def ensure_group(self) -> str:
        """Return the access group ID, creating the group if absent."""
        vpc_id = self.provider.get_default_vpc_id()
        group_id = self.provider.find_security_group(self.group_name, vpc_id)

        if group_id is not None:
            logger.debug("Using existing security group %s (%s)", self.group_name, group_id)
            return group_id

        group_id = self.provider.create_security_group(
            self.group_name, vpc_id, GROUP_DESCRIPTION
        )
        logger.info("Created security group %s (%s)", self.group_name, group_id)
        return group_id

    def reconcile(self, address: str | None = None) -> AccessRule:
        """Converge the group to a single rule for ``address``.

        Parameters
        ----------
        address : str | None
            Caller address; resolved through the resolver when omitted

        Returns
        -------
        AccessRule
            The one remaining rule

        Raises
        ------
        ValidationError
            If the address is not a public IPv4 address
        AddressResolutionError
            If no address was given and none could be resolved
        """
        if address is None:
            if self.resolver is None:
                raise ValidationError("No address given and no resolver configured")
            address = self.resolver.resolve()

        try:
            address = parse_public_address(address)
        except ValueError as e:
            raise ValidationError(f"Refusing to authorize address {address!r}: {e}") from e

        cidr = f"{address}/32"
        wanted = IngressPermission(self.port, cidr)
        group_id = self.ensure_group()
        existing = self.provider.list_ingress_permissions(group_id, self.port)

        # Anything else reaching the admin port is revoked in its own shape
        for stale in existing:
            if stale == wanted:
                continue
            logger.info("Revoking stale access for %s on port %d", stale, self.port)
            self.provider.revoke_ingress(group_id, stale)

        if wanted in existing:
            logger.info("Access rule for %s already in place", cidr)
        else:
            self._authorize(group_id, cidr)

        return AccessRule(
            group_id=group_id, group_name=self.group_name, port=self.port, cidr=cidr
        )

    def _authorize(self, group_id: str, cidr: str) -> None:
        try:
            self.provider.authorize_ingress(group_id, IngressPermission(self.port, cidr))
        except ProviderPermanentError as e:
            if e.error_code != "InvalidPermission.Duplicate":
                raise
            logger.debug("Rule for %s appeared concurrently", cidr)
            return
        logger.info("Authorized %s on port %d", cidr, self.port)
