"""Protocols describing the cloud control plane used by the orchestrator."""

from __future__ import annotations

from typing import Any, Protocol

from spotshell.core.models import (
    ComputeRequest,
    IngressPermission,
    Instance,
    SpotRequestStatus,
)

MUTATING_OPERATIONS = frozenset(
    (
        "create_security_group",
        "authorize_ingress",
        "revoke_ingress",
        "import_key_pair",
        "delete_key_pair",
        "create_role",
        "update_assume_role_policy",
        "put_role_policy",
        "delete_role_policy",
        "delete_role",
        "create_instance_profile",
        "add_role_to_instance_profile",
        "remove_role_from_instance_profile",
        "delete_instance_profile",
        "request_spot_instance",
        "cancel_spot_request",
        "tag_instance",
        "terminate_instance",
    )
)
"""Provider operations that change provider-side state.

Dry runs must never reach any of these.
"""


class ProviderClient(Protocol):
    """Request/response mapping onto one region of a cloud control plane.

    Implementations retry transient errors and raise the exceptions in
    ``spotshell.providers.exceptions``; they hold no orchestration logic.
    Read methods return ``None`` for missing resources; delete methods raise
    ``ProviderNotFoundError`` which callers treat as success.
    """

    region: str

    def get_caller_identity(self) -> dict[str, Any]: ...

    def can_describe_instances(self) -> bool: ...

    def get_default_vpc_id(self) -> str: ...

    def find_security_group(self, name: str, vpc_id: str) -> str | None: ...

    def create_security_group(self, name: str, vpc_id: str, description: str) -> str: ...

    def list_ingress_permissions(
        self, group_id: str, port: int
    ) -> list[IngressPermission]: ...

    def authorize_ingress(self, group_id: str, permission: IngressPermission) -> None: ...

    def revoke_ingress(self, group_id: str, permission: IngressPermission) -> None: ...

    def describe_key_pair(self, name: str) -> str | None: ...

    def import_key_pair(self, name: str, public_key_material: str) -> str: ...

    def delete_key_pair(self, name: str) -> None: ...

    def get_role(self, name: str) -> dict[str, Any] | None: ...

    def create_role(self, name: str, trust_policy: dict[str, Any]) -> dict[str, Any]: ...

    def update_assume_role_policy(self, name: str, trust_policy: dict[str, Any]) -> None: ...

    def delete_role(self, name: str) -> None: ...

    def get_role_policy(self, role_name: str, policy_name: str) -> dict[str, Any] | None: ...

    def put_role_policy(
        self, role_name: str, policy_name: str, document: dict[str, Any]
    ) -> None: ...

    def delete_role_policy(self, role_name: str, policy_name: str) -> None: ...

    def get_instance_profile(self, name: str) -> dict[str, Any] | None: ...

    def create_instance_profile(self, name: str) -> dict[str, Any]: ...

    def add_role_to_instance_profile(self, profile_name: str, role_name: str) -> None: ...

    def remove_role_from_instance_profile(
        self, profile_name: str, role_name: str
    ) -> None: ...

    def delete_instance_profile(self, name: str) -> None: ...

    def get_spot_price(self, instance_type: str) -> float | None: ...

    def resolve_image_id(self, name_pattern: str) -> str: ...

    def request_spot_instance(self, request: ComputeRequest) -> str: ...

    def find_spot_requests(self, session_id: str) -> list[SpotRequestStatus]: ...

    def describe_spot_request(self, request_id: str) -> SpotRequestStatus: ...

    def cancel_spot_request(self, request_id: str) -> None: ...

    def describe_instance(self, instance_id: str) -> Instance | None: ...

    def tag_instance(self, instance_id: str, tags: dict[str, str]) -> None: ...

    def terminate_instance(self, instance_id: str) -> None: ...

    def find_managed_instances(self) -> list[Instance]: ...
