"""AMI resolution for session instances."""

import logging
from typing import Any

from spotshell.providers.aws.constants import DEFAULT_AMI_OWNER
from spotshell.providers.aws.errors import call_aws
from spotshell.providers.exceptions import ProviderPermanentError

logger = logging.getLogger(__name__)


class AMIResolver:
    """Resolve the newest image matching a name pattern."""

    def __init__(self, ec2_client: Any, region: str) -> None:
        """Initialize AMIResolver.

        Parameters
        ----------
        ec2_client : Any
            Boto3 EC2 client
        region : str
            AWS region name
        """
        self.ec2_client = ec2_client
        self.region = region

    def find_ami_by_query(
        self,
        name_pattern: str,
        owner: str | None = DEFAULT_AMI_OWNER,
        architecture: str | None = "x86_64",
    ) -> str:
        """Query AWS for AMI matching pattern and return newest by CreationDate.

        Parameters
        ----------
        name_pattern : str
            AMI name pattern (supports * and ? wildcards)
        owner : str | None
            AWS account ID or alias (e.g., "amazon")
        architecture : str | None
            CPU architecture: "x86_64" or "arm64"

        Returns
        -------
        str
            Image ID of the newest matching AMI

        Raises
        ------
        ProviderPermanentError
            If no AMIs match the filters
        """
        filters = [
            {"Name": "name", "Values": [name_pattern]},
            {"Name": "state", "Values": ["available"]},
        ]
        if architecture:
            filters.append({"Name": "architecture", "Values": [architecture]})

        kwargs: dict[str, Any] = {"Filters": filters}
        if owner:
            kwargs["Owners"] = [owner]

        response = call_aws(self.ec2_client, "describe_images", **kwargs)

        if not response["Images"]:
            raise ProviderPermanentError(
                f"No AMI found in {self.region} for name={name_pattern}",
                error_code="ImageNotFound",
                operation="DescribeImages",
            )

        images = sorted(
            response["Images"],
            key=lambda x: x["CreationDate"],
            reverse=True,
        )
        logger.debug("Resolved %s to %s", name_pattern, images[0]["ImageId"])
        return images[0]["ImageId"]
