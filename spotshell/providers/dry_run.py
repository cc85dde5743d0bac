"""Provider client wrapper that reports mutations instead of performing them."""

from __future__ import annotations

import logging
from typing import Any

from spotshell.core.interfaces import MUTATING_OPERATIONS, ProviderClient
from spotshell.core.models import IngressPermission

logger = logging.getLogger(__name__)

DRY_RUN_ACCOUNT = "000000000000"
DRY_RUN_GROUP_ID = "sg-dryrun"


def _placeholder(operation: str, args: tuple[Any, ...]) -> Any:
    name = args[0] if args and isinstance(args[0], str) else "dry-run"

    if operation == "create_security_group":
        return DRY_RUN_GROUP_ID
    if operation == "import_key_pair":
        return "dry-run"
    if operation == "create_role":
        return {"RoleName": name, "Arn": f"arn:aws:iam::{DRY_RUN_ACCOUNT}:role/{name}"}
    if operation == "create_instance_profile":
        return {
            "InstanceProfileName": name,
            "Arn": f"arn:aws:iam::{DRY_RUN_ACCOUNT}:instance-profile/{name}",
            "Roles": [],
        }
    if operation == "request_spot_instance":
        return "sir-dryrun"
    return None


class DryRunProviderClient:
    """Forward reads to the wrapped client and log every mutation.

    Parameters
    ----------
    client : ProviderClient
        Real provider client used for read-only calls

    Attributes
    ----------
    planned : list[tuple[str, tuple, dict]]
        Mutations that would have been sent, in call order
    """

    def __init__(self, client: ProviderClient) -> None:
        self._client = client
        self.region = client.region
        self.planned: list[tuple[str, tuple[Any, ...], dict[str, Any]]] = []

    def list_ingress_permissions(self, group_id: str, port: int) -> list[IngressPermission]:
        # A group that would have been created has no rules yet
        if group_id == DRY_RUN_GROUP_ID:
            return []
        return self._client.list_ingress_permissions(group_id, port)

    def __getattr__(self, name: str) -> Any:
        if name not in MUTATING_OPERATIONS:
            return getattr(self._client, name)

        def skip(*args: Any, **kwargs: Any) -> Any:
            self.planned.append((name, args, kwargs))
            described = ", ".join(
                [repr(arg) for arg in args] + [f"{k}={v!r}" for k, v in kwargs.items()]
            )
            logger.info("[dry-run] would call %s(%s)", name, described)
            return _placeholder(name, args)

        return skip
