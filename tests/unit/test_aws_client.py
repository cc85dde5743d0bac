"""Tests for the boto3-backed provider client."""

import base64
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any
from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ReadTimeoutError
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from moto import mock_aws

from spotshell.core.models import (
    ComputeRequest,
    ComputeRequestState,
    IngressPermission,
    InstanceState,
    LaunchSpecification,
)
from spotshell.core.orchestrator import SessionOrchestrator
from spotshell.core.session import Session
from spotshell.providers.aws.compute import SpotComputeManager
from spotshell.providers.aws.constants import INSTANCE_POLICY_DOCUMENT
from spotshell.providers.aws.pricing import PricingCache, SpotPriceService
from spotshell.providers.exceptions import ProviderNotFoundError, ProviderPermanentError
from spotshell.services.identity import trust_policy_for
from spotshell.services.keys import compute_fingerprint


@pytest.fixture
def aws_client(aws_credentials):
    """Return an AWSProviderClient talking to moto."""
    with mock_aws():
        from spotshell.providers.aws import AWSProviderClient

        yield AWSProviderClient(region="us-east-1")


def openssh_public_key() -> str:
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    return key.public_key().public_bytes(
        encoding=serialization.Encoding.OpenSSH,
        format=serialization.PublicFormat.OpenSSH,
    ).decode()


class TestSecurityGroups:
    """Security group operations against moto."""

    def test_create_and_find_group(self, aws_client) -> None:
        """Test a created group is found by name in the default VPC."""
        vpc_id = aws_client.get_default_vpc_id()

        assert aws_client.find_security_group("admin-sg", vpc_id) is None
        group_id = aws_client.create_security_group("admin-sg", vpc_id, "admin access")

        assert group_id.startswith("sg-")
        assert aws_client.find_security_group("admin-sg", vpc_id) == group_id

    def test_authorize_list_and_revoke(self, aws_client) -> None:
        """Test ingress rules round-trip through list_ingress_permissions."""
        vpc_id = aws_client.get_default_vpc_id()
        group_id = aws_client.create_security_group("admin-sg", vpc_id, "admin access")

        aws_client.authorize_ingress(group_id, IngressPermission(22, "8.8.8.8/32"))
        aws_client.authorize_ingress(group_id, IngressPermission(443, "1.1.1.1/32"))

        assert aws_client.list_ingress_permissions(group_id, 22) == [
            IngressPermission(22, "8.8.8.8/32")
        ]

        aws_client.revoke_ingress(group_id, IngressPermission(22, "8.8.8.8/32"))

        assert aws_client.list_ingress_permissions(group_id, 22) == []
        assert aws_client.list_ingress_permissions(group_id, 443) == [
            IngressPermission(443, "1.1.1.1/32")
        ]

    def test_duplicate_rule_is_permanent_error(self, aws_client) -> None:
        """Test authorizing an existing rule reports the duplicate code."""
        vpc_id = aws_client.get_default_vpc_id()
        group_id = aws_client.create_security_group("admin-sg", vpc_id, "admin access")
        aws_client.authorize_ingress(group_id, IngressPermission(22, "8.8.8.8/32"))

        with pytest.raises(ProviderPermanentError) as exc_info:
            aws_client.authorize_ingress(group_id, IngressPermission(22, "8.8.8.8/32"))

        assert exc_info.value.error_code == "InvalidPermission.Duplicate"


class TestKeyPairs:
    """Key pair operations against moto."""

    def test_missing_key_pair_is_none(self, aws_client) -> None:
        """Test an unknown key pair has no fingerprint."""
        assert aws_client.describe_key_pair("nope") is None

    def test_import_matches_local_fingerprint(self, aws_client) -> None:
        """Test the provider fingerprint equals the locally computed one."""
        material = openssh_public_key()

        fingerprint = aws_client.import_key_pair("admin-key", material)

        assert fingerprint == compute_fingerprint(material)
        assert aws_client.describe_key_pair("admin-key") == fingerprint

    def test_delete_key_pair(self, aws_client) -> None:
        """Test deleted key pairs are no longer described."""
        aws_client.import_key_pair("admin-key", openssh_public_key())

        aws_client.delete_key_pair("admin-key")

        assert aws_client.describe_key_pair("admin-key") is None


class TestIdentity:
    """IAM operations against moto."""

    def test_role_policy_and_profile(self, aws_client) -> None:
        """Test the full role, policy and profile chain."""
        assert aws_client.get_role("admin-role") is None

        role = aws_client.create_role("admin-role", trust_policy_for("ec2.amazonaws.com"))
        aws_client.put_role_policy("admin-role", "inline", INSTANCE_POLICY_DOCUMENT)
        profile = aws_client.create_instance_profile("admin-role")
        aws_client.add_role_to_instance_profile("admin-role", "admin-role")

        assert role["Arn"].endswith(":role/admin-role")
        assert aws_client.get_role("admin-role")["RoleName"] == "admin-role"
        assert aws_client.get_role_policy("admin-role", "inline") == INSTANCE_POLICY_DOCUMENT
        assert profile["Roles"] == []
        assert aws_client.get_instance_profile("admin-role")["Roles"] == ["admin-role"]

    def test_missing_policy_and_profile_are_none(self, aws_client) -> None:
        """Test absent identity resources are reported as None."""
        aws_client.create_role("admin-role", trust_policy_for("ec2.amazonaws.com"))

        assert aws_client.get_role_policy("admin-role", "inline") is None
        assert aws_client.get_instance_profile("admin-profile") is None

    def test_delete_missing_role_is_not_found(self, aws_client) -> None:
        """Test deleting an unknown role raises ProviderNotFoundError."""
        with pytest.raises(ProviderNotFoundError):
            aws_client.delete_role("never-created")


def test_caller_identity(aws_client) -> None:
    """Test the account is reported from STS."""
    identity = aws_client.get_caller_identity()

    assert identity["Account"] == "123456789012"
    assert identity["Arn"]


def test_unknown_image_pattern_fails(aws_client) -> None:
    """Test resolving a pattern with no match is a permanent error."""
    with pytest.raises(ProviderPermanentError) as exc_info:
        aws_client.resolve_image_id("no-such-image-*")

    assert exc_info.value.error_code == "ImageNotFound"


def make_request(user_data: str = "") -> ComputeRequest:
    spec = LaunchSpecification(
        image_id="ami-0123456789abcdef0",
        instance_type="t3.small",
        key_name="admin-key",
        security_group_id="sg-0123",
        instance_profile_name="admin-role",
        user_data=user_data,
        tags={"SessionId": "spotshell-1"},
    )
    return ComputeRequest(
        instance_type="t3.small", max_price=0.08, region="us-east-1", launch_spec=spec
    )


class TestSpotComputeManager:
    """Tests for spot requests with a mocked EC2 client."""

    def test_request_is_one_time_with_bid_ceiling(self) -> None:
        """Test the request parameters sent to RequestSpotInstances."""
        ec2 = MagicMock()
        ec2.request_spot_instances.return_value = {
            "SpotInstanceRequests": [{"SpotInstanceRequestId": "sir-1"}]
        }
        manager = SpotComputeManager(ec2, "us-east-1")

        request_id = manager.request_spot_instance(make_request(user_data="#!/bin/bash\n"))

        assert request_id == "sir-1"
        kwargs = ec2.request_spot_instances.call_args.kwargs
        assert kwargs["SpotPrice"] == "0.0800"
        assert kwargs["Type"] == "one-time"
        assert kwargs["InstanceCount"] == 1
        spec = kwargs["LaunchSpecification"]
        assert spec["IamInstanceProfile"] == {"Name": "admin-role"}
        assert spec["SecurityGroupIds"] == ["sg-0123"]
        assert base64.b64decode(spec["UserData"]).decode() == "#!/bin/bash\n"
        tags = {tag["Key"]: tag["Value"] for tag in kwargs["TagSpecifications"][0]["Tags"]}
        assert tags == {"ManagedBy": "spotshell", "SessionId": "spotshell-1"}

    def test_request_without_user_data_omits_it(self) -> None:
        """Test empty user data is not sent."""
        ec2 = MagicMock()
        ec2.request_spot_instances.return_value = {
            "SpotInstanceRequests": [{"SpotInstanceRequestId": "sir-1"}]
        }

        SpotComputeManager(ec2, "us-east-1").request_spot_instance(make_request())

        assert "UserData" not in ec2.request_spot_instances.call_args.kwargs["LaunchSpecification"]

    @pytest.mark.parametrize(
        ("state", "code", "expected"),
        [
            ("open", "pending-evaluation", ComputeRequestState.PENDING),
            ("open", "price-too-low", ComputeRequestState.FAILED),
            ("active", "fulfilled", ComputeRequestState.FULFILLED),
            ("failed", "bad-parameters", ComputeRequestState.FAILED),
            ("cancelled", "request-canceled", ComputeRequestState.CANCELLED),
        ],
    )
    def test_describe_maps_states(self, state, code, expected) -> None:
        """Test spot request states map onto the compute request lifecycle."""
        ec2 = MagicMock()
        ec2.describe_spot_instance_requests.return_value = {
            "SpotInstanceRequests": [
                {"State": state, "Status": {"Code": code, "Message": "m"}, "InstanceId": "i-1"}
            ]
        }

        status = SpotComputeManager(ec2, "us-east-1").describe_spot_request("sir-1")

        assert status.state == expected
        assert status.status_code == code

    def test_describe_unknown_request_is_not_found(self) -> None:
        """Test an empty describe response raises ProviderNotFoundError."""
        ec2 = MagicMock()
        ec2.describe_spot_instance_requests.return_value = {"SpotInstanceRequests": []}

        with pytest.raises(ProviderNotFoundError):
            SpotComputeManager(ec2, "us-east-1").describe_spot_request("sir-1")

    def test_find_spot_requests_filters_live_session_requests(self) -> None:
        ec2 = MagicMock()
        ec2.describe_spot_instance_requests.return_value = {
            "SpotInstanceRequests": [
                {
                    "SpotInstanceRequestId": "sir-2",
                    "State": "active",
                    "Status": {"Code": "fulfilled"},
                    "InstanceId": "i-2",
                }
            ]
        }

        found = SpotComputeManager(ec2, "us-east-1").find_spot_requests("spotshell-1")

        assert [(s.request_id, s.instance_id) for s in found] == [("sir-2", "i-2")]
        filters = ec2.describe_spot_instance_requests.call_args.kwargs["Filters"]
        assert {"Name": "tag:SessionId", "Values": ["spotshell-1"]} in filters
        assert {"Name": "state", "Values": ["open", "active"]} in filters

    def test_find_managed_instances_sorts_newest_first(self) -> None:
        """Test managed instances are returned newest first."""
        ec2 = MagicMock()
        ec2.describe_instances.return_value = {
            "Reservations": [
                {
                    "Instances": [
                        {
                            "InstanceId": "i-old",
                            "State": {"Name": "running"},
                            "LaunchTime": datetime(2026, 1, 1, tzinfo=timezone.utc),
                        },
                        {
                            "InstanceId": "i-new",
                            "State": {"Name": "pending"},
                            "LaunchTime": datetime(2026, 2, 1, tzinfo=timezone.utc),
                        },
                    ]
                }
            ]
        }

        instances = SpotComputeManager(ec2, "us-east-1").find_managed_instances()

        assert [i.instance_id for i in instances] == ["i-new", "i-old"]
        assert instances[0].state == InstanceState.BOOTING
        filters = ec2.describe_instances.call_args.kwargs["Filters"]
        assert {"Name": "tag:ManagedBy", "Values": ["spotshell"]} in filters


class LostResponseEC2:
    """EC2 client whose first RequestSpotInstances response times out.

    The request still reaches the service, as when a response is lost in
    transit.
    """

    def __init__(self, client: Any) -> None:
        self._client = client
        self.spot_calls: list[dict[str, Any]] = []

    def __getattr__(self, name: str) -> Any:
        return getattr(self._client, name)

    def request_spot_instances(self, **kwargs: Any) -> dict[str, Any]:
        self.spot_calls.append(kwargs)
        response = self._client.request_spot_instances(**kwargs)
        if len(self.spot_calls) == 1:
            raise ReadTimeoutError(endpoint_url="https://ec2.us-east-1.amazonaws.com/")
        return response


def test_lost_spot_response_is_released(aws_client, session_config, monkeypatch) -> None:
    """Test requests created behind a timed-out response are cancelled and terminated."""
    monkeypatch.setattr("spotshell.providers.aws.errors.time.sleep", lambda seconds: None)
    ec2 = LostResponseEC2(aws_client.compute_manager.ec2_client)
    aws_client.compute_manager.ec2_client = ec2
    request = replace(make_request(), client_token="spotshell-1-1")

    request_id = aws_client.request_spot_instance(request)

    assert [call["ClientToken"] for call in ec2.spot_calls] == ["spotshell-1-1"] * 2
    live = aws_client.find_spot_requests("spotshell-1")
    assert request_id in {status.request_id for status in live}
    assert all(status.instance_id for status in live)

    orchestrator = SessionOrchestrator(aws_client, session_config, address="8.8.8.8")
    session = Session("spotshell-1", "t3.small", "us-east-1", 0.08, spot_request_id=request_id)
    orchestrator._release_requests(session)

    assert aws_client.find_spot_requests("spotshell-1") == []
    for status in live:
        instance = aws_client.describe_instance(status.instance_id)
        assert instance.state == InstanceState.TERMINATED


class TestSpotPriceService:
    """Tests for spot price lookups."""

    def test_lowest_price_is_returned_and_cached(self) -> None:
        """Test the minimum across zones is cached per region and type."""
        ec2 = MagicMock()
        ec2.describe_spot_price_history.return_value = {
            "SpotPriceHistory": [{"SpotPrice": "0.0400"}, {"SpotPrice": "0.0312"}]
        }
        service = SpotPriceService(ec2, "us-east-1", PricingCache())

        assert service.get_spot_price("t3.small") == pytest.approx(0.0312)
        assert service.get_spot_price("t3.small") == pytest.approx(0.0312)
        assert ec2.describe_spot_price_history.call_count == 1

    def test_no_history_returns_none(self) -> None:
        """Test missing price history yields None and is not cached."""
        ec2 = MagicMock()
        ec2.describe_spot_price_history.return_value = {"SpotPriceHistory": []}
        service = SpotPriceService(ec2, "us-east-1")

        assert service.get_spot_price("t3.small") is None
        assert service.get_spot_price("t3.small") is None
        assert ec2.describe_spot_price_history.call_count == 2
