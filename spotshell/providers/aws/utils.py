"""AWS-specific utility functions for spotshell."""

from __future__ import annotations

from typing import Any

from spotshell.constants import PROJECT_TAG_VALUE
from spotshell.core.models import Instance
from spotshell.providers.aws.constants import MANAGED_BY_TAG_KEY


def build_tags(extra: dict[str, str] | None = None) -> list[dict[str, str]]:
    """Build an AWS tag list carrying the managed-by marker.

    Parameters
    ----------
    extra : dict[str, str] | None
        Additional tags to include

    Returns
    -------
    list[dict[str, str]]
        Tags in ``[{"Key": ..., "Value": ...}]`` form
    """
    tags = {MANAGED_BY_TAG_KEY: PROJECT_TAG_VALUE}
    if extra:
        tags.update(extra)
    return [{"Key": key, "Value": value} for key, value in tags.items()]


def tags_to_dict(tags: list[dict[str, str]] | None) -> dict[str, str]:
    """Convert an AWS tag list to a plain dictionary."""
    return {tag["Key"]: tag["Value"] for tag in tags or []}


def instance_from_description(description: dict[str, Any]) -> Instance:
    """Build an Instance from one entry of a describe_instances response.

    Parameters
    ----------
    description : dict[str, Any]
        Instance dictionary from ``Reservations[].Instances[]``

    Returns
    -------
    Instance
        Typed instance snapshot
    """
    return Instance(
        instance_id=description["InstanceId"],
        provider_state=description.get("State", {}).get("Name", "pending"),
        public_ip=description.get("PublicIpAddress"),
        instance_type=description.get("InstanceType"),
        launch_time=description.get("LaunchTime"),
        spot_request_id=description.get("SpotInstanceRequestId"),
        tags=tags_to_dict(description.get("Tags")),
    )


def iter_instances(response: dict[str, Any]) -> list[dict[str, Any]]:
    """Flatten the reservations of a describe_instances response."""
    return [
        instance
        for reservation in response.get("Reservations", [])
        for instance in reservation.get("Instances", [])
    ]


def get_aws_credentials_error_message() -> str:
    """Get standard AWS credentials error message.

    Returns
    -------
    str
        Formatted AWS credentials error message
    """
    return (
        "Cloud credentials not found\n\n"
        "Configure your credentials:\n"
        "  aws configure\n\n"
        "Or set environment variables:\n"
        "  export AWS_ACCESS_KEY_ID=...\n"
        "  export AWS_SECRET_ACCESS_KEY=..."
    )
