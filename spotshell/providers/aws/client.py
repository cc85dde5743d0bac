"""AWS implementation of the provider client."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

import boto3

from spotshell.core.models import (
    ComputeRequest,
    IngressPermission,
    Instance,
    SpotRequestStatus,
)
from spotshell.providers.aws.ami import AMIResolver
from spotshell.providers.aws.compute import SpotComputeManager
from spotshell.providers.aws.errors import call_aws
from spotshell.providers.aws.iam import IAMManager
from spotshell.providers.aws.keypair import KeyPairManager
from spotshell.providers.aws.network import NetworkManager
from spotshell.providers.aws.pricing import PricingCache, SpotPriceService
from spotshell.providers.exceptions import ProviderPermanentError

logger = logging.getLogger(__name__)

PERMISSION_DENIED_CODES = frozenset(
    ("UnauthorizedOperation", "AccessDenied", "AccessDeniedException", "AuthFailure")
)


class AWSProviderClient:
    """Provider client backed by boto3 for a single region.

    Parameters
    ----------
    region : str
        AWS region for EC2 operations
    boto3_client_factory : Callable[..., Any] | None
        Optional factory for creating boto3 clients. If None, uses boto3.client
    pricing_cache : PricingCache | None
        Optional shared spot price cache
    """

    def __init__(
        self,
        region: str,
        boto3_client_factory: Callable[..., Any] | None = None,
        pricing_cache: PricingCache | None = None,
    ) -> None:
        self.region = region
        self.boto3_client_factory = boto3_client_factory or boto3.client
        self.ec2_client = self.boto3_client_factory("ec2", region_name=region)
        self.iam_client = self.boto3_client_factory("iam", region_name=region)
        self.sts_client = self.boto3_client_factory("sts", region_name=region)

        self.network_manager = NetworkManager(self.ec2_client, region)
        self.keypair_manager = KeyPairManager(self.ec2_client, region)
        self.iam_manager = IAMManager(self.iam_client)
        self.ami_resolver = AMIResolver(self.ec2_client, region)
        self.compute_manager = SpotComputeManager(self.ec2_client, region)
        self.price_service = SpotPriceService(self.ec2_client, region, pricing_cache)

    def get_caller_identity(self) -> dict[str, Any]:
        response = call_aws(self.sts_client, "get_caller_identity")
        return {"Account": response["Account"], "Arn": response["Arn"]}

    def can_describe_instances(self) -> bool:
        """Check that the caller may read EC2 instance state.

        Returns
        -------
        bool
            False if the call is denied; other errors propagate
        """
        try:
            call_aws(self.ec2_client, "describe_instances", MaxResults=5)
        except ProviderPermanentError as e:
            if e.error_code in PERMISSION_DENIED_CODES:
                logger.debug("DescribeInstances denied: %s", e)
                return False
            raise
        return True

    def get_default_vpc_id(self) -> str:
        return self.network_manager.get_default_vpc_id()

    def find_security_group(self, name: str, vpc_id: str) -> str | None:
        return self.network_manager.find_security_group(name, vpc_id)

    def create_security_group(self, name: str, vpc_id: str, description: str) -> str:
        return self.network_manager.create_security_group(name, vpc_id, description)

    def list_ingress_permissions(self, group_id: str, port: int) -> list[IngressPermission]:
        return self.network_manager.list_ingress_permissions(group_id, port)

    def authorize_ingress(self, group_id: str, permission: IngressPermission) -> None:
        self.network_manager.authorize_ingress(group_id, permission)

    def revoke_ingress(self, group_id: str, permission: IngressPermission) -> None:
        self.network_manager.revoke_ingress(group_id, permission)

    def describe_key_pair(self, name: str) -> str | None:
        return self.keypair_manager.describe_key_pair(name)

    def import_key_pair(self, name: str, public_key_material: str) -> str:
        return self.keypair_manager.import_key_pair(name, public_key_material)

    def delete_key_pair(self, name: str) -> None:
        self.keypair_manager.delete_key_pair(name)

    def get_role(self, name: str) -> dict[str, Any] | None:
        return self.iam_manager.get_role(name)

    def create_role(self, name: str, trust_policy: dict[str, Any]) -> dict[str, Any]:
        return self.iam_manager.create_role(name, trust_policy)

    def update_assume_role_policy(self, name: str, trust_policy: dict[str, Any]) -> None:
        self.iam_manager.update_assume_role_policy(name, trust_policy)

    def delete_role(self, name: str) -> None:
        self.iam_manager.delete_role(name)

    def get_role_policy(self, role_name: str, policy_name: str) -> dict[str, Any] | None:
        return self.iam_manager.get_role_policy(role_name, policy_name)

    def put_role_policy(
        self, role_name: str, policy_name: str, document: dict[str, Any]
    ) -> None:
        self.iam_manager.put_role_policy(role_name, policy_name, document)

    def delete_role_policy(self, role_name: str, policy_name: str) -> None:
        self.iam_manager.delete_role_policy(role_name, policy_name)

    def get_instance_profile(self, name: str) -> dict[str, Any] | None:
        return self.iam_manager.get_instance_profile(name)

    def create_instance_profile(self, name: str) -> dict[str, Any]:
        return self.iam_manager.create_instance_profile(name)

    def add_role_to_instance_profile(self, profile_name: str, role_name: str) -> None:
        self.iam_manager.add_role_to_instance_profile(profile_name, role_name)

    def remove_role_from_instance_profile(self, profile_name: str, role_name: str) -> None:
        self.iam_manager.remove_role_from_instance_profile(profile_name, role_name)

    def delete_instance_profile(self, name: str) -> None:
        self.iam_manager.delete_instance_profile(name)

    def get_spot_price(self, instance_type: str) -> float | None:
        return self.price_service.get_spot_price(instance_type)

    def resolve_image_id(self, name_pattern: str) -> str:
        return self.ami_resolver.find_ami_by_query(name_pattern)

    def request_spot_instance(self, request: ComputeRequest) -> str:
        return self.compute_manager.request_spot_instance(request)

    def find_spot_requests(self, session_id: str) -> list[SpotRequestStatus]:
        return self.compute_manager.find_spot_requests(session_id)

    def describe_spot_request(self, request_id: str) -> SpotRequestStatus:
        return self.compute_manager.describe_spot_request(request_id)

    def cancel_spot_request(self, request_id: str) -> None:
        self.compute_manager.cancel_spot_request(request_id)

    def describe_instance(self, instance_id: str) -> Instance | None:
        return self.compute_manager.describe_instance(instance_id)

    def tag_instance(self, instance_id: str, tags: dict[str, str]) -> None:
        self.compute_manager.tag_instance(instance_id, tags)

    def terminate_instance(self, instance_id: str) -> None:
        self.compute_manager.terminate_instance(instance_id)

    def find_managed_instances(self) -> list[Instance]:
        return self.compute_manager.find_managed_instances()
