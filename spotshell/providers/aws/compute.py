"""Spot instance requests and instance lifecycle for session hosts."""

import base64
import logging
from typing import Any

from spotshell.constants import PROJECT_TAG_VALUE
from spotshell.core.models import (
    ComputeRequest,
    ComputeRequestState,
    Instance,
    SpotRequestStatus,
)
from spotshell.providers.aws.constants import (
    LIVE_INSTANCE_STATES,
    LIVE_SPOT_REQUEST_STATES,
    MANAGED_BY_TAG_KEY,
    SESSION_ID_TAG_KEY,
    SPOT_FATAL_STATUS_CODES,
)
from spotshell.providers.aws.errors import call_aws
from spotshell.providers.aws.utils import (
    build_tags,
    instance_from_description,
    iter_instances,
)
from spotshell.providers.exceptions import ProviderNotFoundError

logger = logging.getLogger(__name__)


def _spot_state(state: str, status_code: str) -> ComputeRequestState:
    if state == "active":
        return ComputeRequestState.FULFILLED
    if state == "failed" or status_code in SPOT_FATAL_STATUS_CODES:
        return ComputeRequestState.FAILED
    if state in ("cancelled", "closed"):
        return ComputeRequestState.CANCELLED
    return ComputeRequestState.PENDING


def _status_from_description(
    entry: dict[str, Any], request_id: str = ""
) -> SpotRequestStatus:
    status = entry.get("Status", {})
    status_code = status.get("Code", "")
    return SpotRequestStatus(
        request_id=entry.get("SpotInstanceRequestId", request_id),
        state=_spot_state(entry.get("State", "open"), status_code),
        status_code=status_code,
        instance_id=entry.get("InstanceId"),
        message=status.get("Message", ""),
    )


class SpotComputeManager:
    """Manage one-time spot requests and the instances they fulfill."""

    def __init__(self, ec2_client: Any, region: str) -> None:
        """Initialize SpotComputeManager.

        Parameters
        ----------
        ec2_client : Any
            Boto3 EC2 client
        region : str
            AWS region name
        """
        self.ec2_client = ec2_client
        self.region = region

    def request_spot_instance(self, request: ComputeRequest) -> str:
        """Submit a one-time spot request for a single instance.

        Parameters
        ----------
        request : ComputeRequest
            Validated compute request

        Returns
        -------
        str
            Spot instance request ID
        """
        spec = request.launch_spec
        launch_specification: dict[str, Any] = {
            "ImageId": spec.image_id,
            "InstanceType": spec.instance_type,
            "KeyName": spec.key_name,
            "SecurityGroupIds": [spec.security_group_id],
            "IamInstanceProfile": {"Name": spec.instance_profile_name},
        }
        if spec.user_data:
            # RequestSpotInstances does not encode user data on our behalf
            launch_specification["UserData"] = base64.b64encode(
                spec.user_data.encode("utf-8")
            ).decode("ascii")
        if spec.availability_zone:
            launch_specification["Placement"] = {
                "AvailabilityZone": spec.availability_zone
            }

        params: dict[str, Any] = {
            "SpotPrice": f"{request.max_price:.4f}",
            "InstanceCount": 1,
            "Type": "one-time",
            "InstanceInterruptionBehavior": "terminate",
            "LaunchSpecification": launch_specification,
            "TagSpecifications": [
                {
                    "ResourceType": "spot-instances-request",
                    "Tags": build_tags(spec.tags),
                }
            ],
        }
        if request.client_token:
            # Transient retries resend the same token and get the same request back
            params["ClientToken"] = request.client_token

        response = call_aws(self.ec2_client, "request_spot_instances", **params)
        request_id = response["SpotInstanceRequests"][0]["SpotInstanceRequestId"]
        logger.debug("Submitted spot request %s in %s", request_id, self.region)
        return request_id

    def find_spot_requests(self, session_id: str) -> list[SpotRequestStatus]:
        """List open or active spot requests tagged with ``session_id``.

        Parameters
        ----------
        session_id : str
            Session identifier carried in the ``SessionId`` tag

        Returns
        -------
        list[SpotRequestStatus]
            Live requests submitted for the session, in provider order
        """
        response = call_aws(
            self.ec2_client,
            "describe_spot_instance_requests",
            Filters=[
                {"Name": f"tag:{SESSION_ID_TAG_KEY}", "Values": [session_id]},
                {"Name": "state", "Values": LIVE_SPOT_REQUEST_STATES},
            ],
        )
        return [
            _status_from_description(entry)
            for entry in response.get("SpotInstanceRequests", [])
        ]

    def describe_spot_request(self, request_id: str) -> SpotRequestStatus:
        """Report the fulfillment state of a spot request.

        Raises
        ------
        ProviderNotFoundError
            If the request is unknown
        """
        response = call_aws(
            self.ec2_client,
            "describe_spot_instance_requests",
            SpotInstanceRequestIds=[request_id],
        )
        requests = response.get("SpotInstanceRequests", [])
        if not requests:
            raise ProviderNotFoundError(
                f"Spot request {request_id} not found",
                error_code="InvalidSpotInstanceRequestID.NotFound",
                operation="DescribeSpotInstanceRequests",
            )

        return _status_from_description(requests[0], request_id)

    def cancel_spot_request(self, request_id: str) -> None:
        call_aws(
            self.ec2_client,
            "cancel_spot_instance_requests",
            SpotInstanceRequestIds=[request_id],
        )

    def describe_instance(self, instance_id: str) -> Instance | None:
        try:
            response = call_aws(
                self.ec2_client, "describe_instances", InstanceIds=[instance_id]
            )
        except ProviderNotFoundError:
            return None

        instances = iter_instances(response)
        return instance_from_description(instances[0]) if instances else None

    def tag_instance(self, instance_id: str, tags: dict[str, str]) -> None:
        """Copy session tags onto the instance.

        Spot requests do not propagate their tags to fulfilled instances.
        """
        call_aws(
            self.ec2_client,
            "create_tags",
            Resources=[instance_id],
            Tags=build_tags(tags),
        )

    def terminate_instance(self, instance_id: str) -> None:
        call_aws(self.ec2_client, "terminate_instances", InstanceIds=[instance_id])
        logger.debug("Requested termination of %s", instance_id)

    def find_managed_instances(self) -> list[Instance]:
        """List live spotshell-managed instances, newest first.

        Returns
        -------
        list[Instance]
            Pending or running instances tagged as managed by spotshell
        """
        response = call_aws(
            self.ec2_client,
            "describe_instances",
            Filters=[
                {"Name": f"tag:{MANAGED_BY_TAG_KEY}", "Values": [PROJECT_TAG_VALUE]},
                {"Name": "instance-state-name", "Values": LIVE_INSTANCE_STATES},
            ],
        )
        instances = [
            instance_from_description(description)
            for description in iter_instances(response)
        ]
        instances.sort(
            key=lambda x: x.launch_time.timestamp() if x.launch_time else 0.0,
            reverse=True,
        )
        return instances
