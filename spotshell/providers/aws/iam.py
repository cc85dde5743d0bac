"""IAM role and instance profile operations."""

import json
import logging
from typing import Any
from urllib.parse import unquote

from spotshell.providers.aws.errors import call_aws
from spotshell.providers.aws.utils import build_tags
from spotshell.providers.exceptions import ProviderNotFoundError

logger = logging.getLogger(__name__)


def _decode_policy_document(document: Any) -> dict[str, Any]:
    # IAM may return policy documents URL-encoded
    if isinstance(document, str):
        return json.loads(unquote(document))
    return document


class IAMManager:
    """Manage the IAM role and instance profile assigned to session instances.

    IAM is a global service, so no region is bound here.
    """

    def __init__(self, iam_client: Any) -> None:
        self.iam_client = iam_client

    def get_role(self, name: str) -> dict[str, Any] | None:
        try:
            response = call_aws(self.iam_client, "get_role", RoleName=name)
        except ProviderNotFoundError:
            return None
        role = response["Role"]
        return {
            "RoleName": role["RoleName"],
            "Arn": role["Arn"],
            "AssumeRolePolicyDocument": _decode_policy_document(
                role.get("AssumeRolePolicyDocument", {})
            ),
        }

    def create_role(self, name: str, trust_policy: dict[str, Any]) -> dict[str, Any]:
        """Create a role with the given trust policy.

        Parameters
        ----------
        name : str
            Role name
        trust_policy : dict[str, Any]
            Assume-role policy document

        Returns
        -------
        dict[str, Any]
            ``RoleName`` and ``Arn`` of the new role
        """
        response = call_aws(
            self.iam_client,
            "create_role",
            RoleName=name,
            AssumeRolePolicyDocument=json.dumps(trust_policy),
            Description="Role for ephemeral spotshell admin instances",
            Tags=build_tags(),
        )
        logger.debug("Created IAM role %s", name)
        return {"RoleName": response["Role"]["RoleName"], "Arn": response["Role"]["Arn"]}

    def update_assume_role_policy(self, name: str, trust_policy: dict[str, Any]) -> None:
        call_aws(
            self.iam_client,
            "update_assume_role_policy",
            RoleName=name,
            PolicyDocument=json.dumps(trust_policy),
        )
        logger.debug("Replaced trust policy of %s", name)

    def delete_role(self, name: str) -> None:
        call_aws(self.iam_client, "delete_role", RoleName=name)

    def get_role_policy(self, role_name: str, policy_name: str) -> dict[str, Any] | None:
        try:
            response = call_aws(
                self.iam_client,
                "get_role_policy",
                RoleName=role_name,
                PolicyName=policy_name,
            )
        except ProviderNotFoundError:
            return None
        return _decode_policy_document(response["PolicyDocument"])

    def put_role_policy(
        self, role_name: str, policy_name: str, document: dict[str, Any]
    ) -> None:
        call_aws(
            self.iam_client,
            "put_role_policy",
            RoleName=role_name,
            PolicyName=policy_name,
            PolicyDocument=json.dumps(document),
        )

    def delete_role_policy(self, role_name: str, policy_name: str) -> None:
        call_aws(
            self.iam_client,
            "delete_role_policy",
            RoleName=role_name,
            PolicyName=policy_name,
        )

    def get_instance_profile(self, name: str) -> dict[str, Any] | None:
        """Look up an instance profile and the roles attached to it.

        Returns
        -------
        dict[str, Any] | None
            ``InstanceProfileName``, ``Arn`` and ``Roles`` (role names), or
            None if the profile does not exist
        """
        try:
            response = call_aws(
                self.iam_client, "get_instance_profile", InstanceProfileName=name
            )
        except ProviderNotFoundError:
            return None

        profile = response["InstanceProfile"]
        return {
            "InstanceProfileName": profile["InstanceProfileName"],
            "Arn": profile["Arn"],
            "Roles": [role["RoleName"] for role in profile.get("Roles", [])],
        }

    def create_instance_profile(self, name: str) -> dict[str, Any]:
        response = call_aws(
            self.iam_client,
            "create_instance_profile",
            InstanceProfileName=name,
            Tags=build_tags(),
        )
        profile = response["InstanceProfile"]
        logger.debug("Created instance profile %s", name)
        return {
            "InstanceProfileName": profile["InstanceProfileName"],
            "Arn": profile["Arn"],
            "Roles": [],
        }

    def add_role_to_instance_profile(self, profile_name: str, role_name: str) -> None:
        call_aws(
            self.iam_client,
            "add_role_to_instance_profile",
            InstanceProfileName=profile_name,
            RoleName=role_name,
        )

    def remove_role_from_instance_profile(self, profile_name: str, role_name: str) -> None:
        call_aws(
            self.iam_client,
            "remove_role_from_instance_profile",
            InstanceProfileName=profile_name,
            RoleName=role_name,
        )

    def delete_instance_profile(self, name: str) -> None:
        call_aws(self.iam_client, "delete_instance_profile", InstanceProfileName=name)
