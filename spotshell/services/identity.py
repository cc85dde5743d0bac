"""Idempotent provisioning of the instance role and profile."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from spotshell.core.exceptions import ValidationError
from spotshell.core.interfaces import ProviderClient
from spotshell.core.models import RoleHandle
from spotshell.providers.aws.constants import INSTANCE_POLICY_NAME
from spotshell.providers.exceptions import ProviderError, ProviderNotFoundError
from spotshell.utils import validate_resource_name

logger = logging.getLogger(__name__)


def trust_policy_for(principal: str) -> dict[str, Any]:
    """Build an assume-role policy trusting a single service principal."""
    return {
        "Version": "2012-10-17",
        "Statement": [
            {
                "Effect": "Allow",
                "Principal": {"Service": principal},
                "Action": "sts:AssumeRole",
            }
        ],
    }


def _has_wildcard_action(policy_document: dict[str, Any]) -> bool:
    for statement in policy_document.get("Statement", []):
        actions = statement.get("Action", [])
        if isinstance(actions, str):
            actions = [actions]
        if any(action == "*" or action.endswith(":*") for action in actions):
            return True
    return False


class IdentityProvisioner:
    """Converge the role, its inline policy and its instance profile.

    Parameters
    ----------
    provider : ProviderClient
        Provider client
    instance_profile_name : str | None
        Profile name; defaults to the role name
    policy_name : str
        Name of the inline policy
    """

    def __init__(
        self,
        provider: ProviderClient,
        instance_profile_name: str | None = None,
        policy_name: str = INSTANCE_POLICY_NAME,
    ) -> None:
        self.provider = provider
        self.instance_profile_name = instance_profile_name
        self.policy_name = policy_name

    def ensure_role(
        self, name: str, trusted_principal: str, policy_document: dict[str, Any]
    ) -> RoleHandle:
        """Make sure the role and its attachable profile exist as specified.

        Parameters
        ----------
        name : str
            Role name
        trusted_principal : str
            Only service principal allowed to assume the role
        policy_document : dict[str, Any]
            Inline policy granting the instance its operations

        Returns
        -------
        RoleHandle
            Names and ARNs of the role and profile

        Raises
        ------
        ValidationError
            If a name is unsafe or the policy grants wildcard actions
        ProviderError
            If any step fails; whatever this call created is removed first
        """
        role_name = validate_resource_name(name, "role name")
        profile_name = validate_resource_name(
            self.instance_profile_name or role_name, "instance profile name"
        )
        if _has_wildcard_action(policy_document):
            raise ValidationError("Instance policy must not grant wildcard actions")

        undo: list[tuple[str, Callable[[], None]]] = []

        try:
            role = self._ensure_role(role_name, trusted_principal, undo)
            self._ensure_policy(role_name, policy_document, undo)
            profile = self._ensure_profile(profile_name, undo)
            self._ensure_association(profile_name, role_name, profile, undo)
        except ProviderError:
            self._undo(undo)
            raise

        return RoleHandle(
            role_name=role_name,
            role_arn=role["Arn"],
            instance_profile_name=profile_name,
            instance_profile_arn=profile["Arn"],
        )

    def _ensure_role(
        self,
        role_name: str,
        trusted_principal: str,
        undo: list[tuple[str, Callable[[], None]]],
    ) -> dict[str, Any]:
        trust_policy = trust_policy_for(trusted_principal)
        role = self.provider.get_role(role_name)
        if role is not None:
            if role.get("AssumeRolePolicyDocument") != trust_policy:
                # The role is shared; a widened trust is narrowed, never restored
                logger.warning(
                    "IAM role %s trusts more than %s, replacing its trust policy",
                    role_name,
                    trusted_principal,
                )
                self.provider.update_assume_role_policy(role_name, trust_policy)
            else:
                logger.info("IAM role %s already exists", role_name)
            return role

        role = self.provider.create_role(role_name, trust_policy)
        undo.append((f"delete role {role_name}", lambda: self.provider.delete_role(role_name)))
        logger.info("Created IAM role %s", role_name)
        return role

    def _ensure_policy(
        self,
        role_name: str,
        policy_document: dict[str, Any],
        undo: list[tuple[str, Callable[[], None]]],
    ) -> None:
        current = self.provider.get_role_policy(role_name, self.policy_name)
        if current == policy_document:
            logger.info("Policy %s already attached to %s", self.policy_name, role_name)
            return

        self.provider.put_role_policy(role_name, self.policy_name, policy_document)
        if current is None:
            undo.append(
                (
                    f"delete policy {self.policy_name}",
                    lambda: self.provider.delete_role_policy(role_name, self.policy_name),
                )
            )
        logger.info("Attached policy %s to %s", self.policy_name, role_name)

    def _ensure_profile(
        self, profile_name: str, undo: list[tuple[str, Callable[[], None]]]
    ) -> dict[str, Any]:
        profile = self.provider.get_instance_profile(profile_name)
        if profile is not None:
            logger.info("Instance profile %s already exists", profile_name)
            return profile

        profile = self.provider.create_instance_profile(profile_name)
        undo.append(
            (
                f"delete instance profile {profile_name}",
                lambda: self.provider.delete_instance_profile(profile_name),
            )
        )
        logger.info("Created instance profile %s", profile_name)
        return profile

    def _ensure_association(
        self,
        profile_name: str,
        role_name: str,
        profile: dict[str, Any],
        undo: list[tuple[str, Callable[[], None]]],
    ) -> None:
        if role_name in profile.get("Roles", []):
            logger.info("Role %s already in profile %s", role_name, profile_name)
            return

        self.provider.add_role_to_instance_profile(profile_name, role_name)
        undo.append(
            (
                f"remove {role_name} from {profile_name}",
                lambda: self.provider.remove_role_from_instance_profile(
                    profile_name, role_name
                ),
            )
        )
        logger.info("Added role %s to instance profile %s", role_name, profile_name)

    def _undo(self, undo: list[tuple[str, Callable[[], None]]]) -> None:
        """Best-effort removal of resources created by the failed call."""
        for description, action in reversed(undo):
            try:
                action()
                logger.info("Cleaned up: %s", description)
            except ProviderNotFoundError:
                logger.debug("Already gone: %s", description)
            except ProviderError as e:
                logger.warning("Cleanup step failed (%s): %s", description, e)
