"""Typed records exchanged between the orchestrator, its components and providers."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path


class ComputeRequestState(str, Enum):
    """Progress of a spot compute request."""

    SUBMITTED = "submitted"
    PENDING = "pending"
    FULFILLED = "fulfilled"
    FAILED = "failed"
    CANCELLED = "cancelled"


class InstanceState(str, Enum):
    """Lifecycle of the session instance as seen by the orchestrator."""

    REQUESTED = "requested"
    BOOTING = "booting"
    RUNNING = "running"
    REACHABLE = "reachable"
    TERMINATED = "terminated"

    @classmethod
    def from_provider(cls, state_name: str) -> InstanceState:
        """Map a provider instance state name onto the session lifecycle."""
        if state_name == "pending":
            return cls.BOOTING
        if state_name == "running":
            return cls.RUNNING
        if state_name in ("shutting-down", "terminated", "stopping", "stopped"):
            return cls.TERMINATED
        return cls.REQUESTED


INGRESS_SOURCE_FIELDS = {
    "cidr": ("IpRanges", "CidrIp"),
    "cidr_ipv6": ("Ipv6Ranges", "CidrIpv6"),
    "group": ("UserIdGroupPairs", "GroupId"),
    "prefix_list": ("PrefixListIds", "PrefixListId"),
}
"""Payload list and key carrying each kind of ingress source."""

ALL_PROTOCOLS = "-1"


@dataclass(frozen=True)
class IngressPermission:
    """One ingress permission for a single source.

    ``source`` is a CIDR, an IPv6 CIDR, a security group ID or a prefix list
    ID, as named by ``source_kind``. ``to_port`` is set only for permissions
    spanning a port range; permissions for every protocol carry no ports.
    """

    port: int
    source: str
    protocol: str = "tcp"
    to_port: int | None = None
    source_kind: str = "cidr"

    @classmethod
    def from_rule(
        cls,
        protocol: str,
        from_port: int | None,
        to_port: int | None,
        source_kind: str,
        source: str,
    ) -> IngressPermission:
        """Build a permission from a described rule, normalizing single-port ranges."""
        if protocol == ALL_PROTOCOLS:
            return cls(port=-1, source=source, protocol=protocol, source_kind=source_kind)
        end = None if to_port == from_port else to_port
        return cls(
            port=from_port, source=source, protocol=protocol, to_port=end, source_kind=source_kind
        )

    def covers(self, port: int) -> bool:
        """Whether TCP traffic to ``port`` is admitted by this permission."""
        if self.protocol == ALL_PROTOCOLS:
            return True
        if self.protocol not in ("tcp", "6"):
            return False
        end = self.port if self.to_port is None else self.to_port
        return self.port <= port <= end

    def to_ip_permissions(self) -> list[dict]:
        """Build the ``IpPermissions`` request payload for this permission."""
        entry: dict = {"IpProtocol": self.protocol}
        if self.protocol != ALL_PROTOCOLS:
            entry["FromPort"] = self.port
            entry["ToPort"] = self.port if self.to_port is None else self.to_port
        list_key, source_key = INGRESS_SOURCE_FIELDS[self.source_kind]
        entry[list_key] = [{source_key: self.source}]
        return [entry]

    def __str__(self) -> str:
        if self.protocol == ALL_PROTOCOLS:
            return f"{self.source} (all traffic)"
        if self.to_port is not None:
            return f"{self.source} ({self.protocol} {self.port}-{self.to_port})"
        return f"{self.source} ({self.protocol} {self.port})"


@dataclass(frozen=True)
class AccessRule:
    """The reconciled ingress rule of the access group."""

    group_id: str
    group_name: str
    port: int
    cidr: str
    protocol: str = "tcp"

    @property
    def address(self) -> str:
        return self.cidr.split("/", 1)[0]


@dataclass(frozen=True)
class KeyPair:
    """Local key pair registered with the provider.

    The private key never leaves ``private_key_path``.
    """

    name: str
    private_key_path: Path
    public_key_path: Path
    public_key_material: str
    fingerprint: str


@dataclass(frozen=True)
class RoleHandle:
    """Identity resources the instance is launched with."""

    role_name: str
    role_arn: str
    instance_profile_name: str
    instance_profile_arn: str


@dataclass(frozen=True)
class LaunchSpecification:
    """Launch configuration referenced by a compute request."""

    image_id: str
    instance_type: str
    key_name: str
    security_group_id: str
    instance_profile_name: str
    user_data: str = ""
    availability_zone: str | None = None
    tags: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class ComputeRequest:
    """A one-time spot request for a single instance.

    ``client_token`` makes resubmission idempotent: the provider returns the
    original request instead of creating a second one.
    """

    instance_type: str
    max_price: float
    region: str
    launch_spec: LaunchSpecification
    client_token: str | None = None


@dataclass(frozen=True)
class SpotRequestStatus:
    """Snapshot of a spot request as reported by the provider."""

    request_id: str
    state: ComputeRequestState
    status_code: str = ""
    instance_id: str | None = None
    message: str = ""

    @property
    def is_fulfilled(self) -> bool:
        return self.state == ComputeRequestState.FULFILLED and self.instance_id is not None


@dataclass(frozen=True)
class Instance:
    """Snapshot of a compute instance."""

    instance_id: str
    provider_state: str
    public_ip: str | None = None
    instance_type: str | None = None
    launch_time: datetime | None = None
    spot_request_id: str | None = None
    tags: dict[str, str] = field(default_factory=dict)

    @property
    def state(self) -> InstanceState:
        return InstanceState.from_provider(self.provider_state)
