"""Tests for the dry-run provider wrapper."""

from spotshell.core.models import IngressPermission
from spotshell.providers.dry_run import DRY_RUN_GROUP_ID, DryRunProviderClient


def test_reads_are_forwarded(fake_provider) -> None:
    """Test read-only calls reach the wrapped client."""
    client = DryRunProviderClient(fake_provider)

    assert client.get_default_vpc_id() == fake_provider.vpc_id
    assert client.get_spot_price("t3.small") == fake_provider.spot_price
    assert client.region == fake_provider.region
    assert client.planned == []


def test_mutations_are_recorded_not_sent(fake_provider) -> None:
    """Test mutating calls are planned and return placeholders."""
    client = DryRunProviderClient(fake_provider)

    group_id = client.create_security_group("admin-sg", "vpc-1", "desc")
    client.authorize_ingress(group_id, IngressPermission(22, "8.8.8.8/32"))
    role = client.create_role("admin-role", {})
    profile = client.create_instance_profile("admin-role")

    assert group_id == DRY_RUN_GROUP_ID
    assert role["RoleName"] == "admin-role"
    assert profile["Roles"] == []
    assert [name for name, _, _ in client.planned] == [
        "create_security_group",
        "authorize_ingress",
        "create_role",
        "create_instance_profile",
    ]
    assert fake_provider.mutations() == []
    assert fake_provider.security_groups == {}


def test_placeholder_group_has_no_rules(fake_provider) -> None:
    """Test the group that would be created is reported as empty."""
    client = DryRunProviderClient(fake_provider)

    assert client.list_ingress_permissions(DRY_RUN_GROUP_ID, 22) == []
    assert fake_provider.calls == []


def test_existing_group_rules_are_read(fake_provider) -> None:
    group_id = fake_provider.create_security_group("admin-sg", "vpc-1", "desc")
    fake_provider.authorize_ingress(group_id, IngressPermission(22, "8.8.8.8/32"))

    client = DryRunProviderClient(fake_provider)

    assert client.list_ingress_permissions(group_id, 22) == [IngressPermission(22, "8.8.8.8/32")]
