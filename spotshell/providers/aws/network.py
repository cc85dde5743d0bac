"""Security group management for the admin access group."""

import logging
from typing import Any

from spotshell.core.models import INGRESS_SOURCE_FIELDS, IngressPermission
from spotshell.providers.aws.errors import call_aws
from spotshell.providers.aws.utils import build_tags
from spotshell.providers.exceptions import ProviderPermanentError

logger = logging.getLogger(__name__)


class NetworkManager:
    """Manage EC2 network resources (security groups, VPCs)."""

    def __init__(self, ec2_client: Any, region: str) -> None:
        """Initialize NetworkManager.

        Parameters
        ----------
        ec2_client : Any
            Boto3 EC2 client
        region : str
            AWS region name
        """
        self.ec2_client = ec2_client
        self.region = region

    def get_default_vpc_id(self) -> str:
        """Get the default VPC ID for the region.

        Returns
        -------
        str
            Default VPC ID

        Raises
        ------
        ProviderPermanentError
            If no default VPC is found
        """
        vpcs = call_aws(
            self.ec2_client,
            "describe_vpcs",
            Filters=[{"Name": "isDefault", "Values": ["true"]}],
        )

        if not vpcs["Vpcs"]:
            raise ProviderPermanentError(
                f"No default VPC found in region '{self.region}'",
                error_code="NoDefaultVpc",
                operation="DescribeVpcs",
            )

        return vpcs["Vpcs"][0]["VpcId"]

    def find_security_group(self, name: str, vpc_id: str) -> str | None:
        """Look up a security group by name within a VPC.

        Parameters
        ----------
        name : str
            Security group name
        vpc_id : str
            VPC the group belongs to

        Returns
        -------
        str | None
            Group ID, or None if no such group exists
        """
        response = call_aws(
            self.ec2_client,
            "describe_security_groups",
            Filters=[
                {"Name": "group-name", "Values": [name]},
                {"Name": "vpc-id", "Values": [vpc_id]},
            ],
        )
        groups = response.get("SecurityGroups", [])
        return groups[0]["GroupId"] if groups else None

    def create_security_group(self, name: str, vpc_id: str, description: str) -> str:
        """Create a tagged security group with no ingress rules.

        Returns
        -------
        str
            Security group ID
        """
        response = call_aws(
            self.ec2_client,
            "create_security_group",
            GroupName=name,
            Description=description,
            VpcId=vpc_id,
            TagSpecifications=[{"ResourceType": "security-group", "Tags": build_tags()}],
        )
        group_id = response["GroupId"]
        logger.debug("Created security group %s (%s)", name, group_id)
        return group_id

    def list_ingress_permissions(self, group_id: str, port: int) -> list[IngressPermission]:
        """List every ingress source that can reach TCP ``port``.

        Rules for all protocols and port ranges spanning ``port`` count, and
        IPv4, IPv6, security group and prefix list sources are all reported.

        Parameters
        ----------
        group_id : str
            Security group ID
        port : int
            TCP port of interest

        Returns
        -------
        list[IngressPermission]
            One permission per source, shaped as described, in provider order
        """
        response = call_aws(
            self.ec2_client, "describe_security_groups", GroupIds=[group_id]
        )
        permissions: list[IngressPermission] = []

        for group in response.get("SecurityGroups", []):
            for rule in group.get("IpPermissions", []):
                for kind, (list_key, source_key) in INGRESS_SOURCE_FIELDS.items():
                    for entry in rule.get(list_key, []):
                        if not entry.get(source_key):
                            continue
                        permission = IngressPermission.from_rule(
                            rule.get("IpProtocol", ""),
                            rule.get("FromPort"),
                            rule.get("ToPort"),
                            kind,
                            entry[source_key],
                        )
                        if permission.covers(port) and permission not in permissions:
                            permissions.append(permission)

        return permissions

    def authorize_ingress(self, group_id: str, permission: IngressPermission) -> None:
        call_aws(
            self.ec2_client,
            "authorize_security_group_ingress",
            GroupId=group_id,
            IpPermissions=permission.to_ip_permissions(),
        )

    def revoke_ingress(self, group_id: str, permission: IngressPermission) -> None:
        call_aws(
            self.ec2_client,
            "revoke_security_group_ingress",
            GroupId=group_id,
            IpPermissions=permission.to_ip_permissions(),
        )
