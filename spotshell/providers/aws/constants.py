"""AWS-specific constants for spot compute, networking and identity operations."""

MANAGED_BY_TAG_KEY = "ManagedBy"
"""Tag key marking resources created by spotshell."""

SESSION_ID_TAG_KEY = "SessionId"
"""Tag key carrying the session identifier on per-session resources."""

DEFAULT_AMI_OWNER = "amazon"
"""Owner alias used when searching for the default image."""

DEFAULT_AMI_NAME_PATTERN = "al2023-ami-2023.*-x86_64"
"""Name pattern of the default Amazon Linux image.

Amazon Linux images log in as ``ec2-user`` and ship the OpenSSH server.
"""

LIVE_INSTANCE_STATES = [
    "pending",
    "running",
]
"""EC2 instance states an adoptable session instance can be in."""

LIVE_SPOT_REQUEST_STATES = [
    "open",
    "active",
]
"""Spot request states that can still hold or obtain capacity."""

SPOT_FATAL_STATUS_CODES = frozenset(
    (
        "bad-parameters",
        "price-too-low",
        "capacity-not-available",
        "constraint-not-fulfillable",
        "launch-group-constraint",
        "az-group-constraint",
        "placement-group-constraint",
        "request-canceled-and-instance-running",
        "canceled-before-fulfillment",
        "schedule-expired",
        "system-error",
    )
)
"""Spot request status codes that end a session launch immediately."""

TRUSTED_SERVICE_PRINCIPAL = "ec2.amazonaws.com"
"""Only principal allowed to assume the session role."""

INSTANCE_POLICY_NAME = "spotshell-instance-policy"
"""Name of the inline policy attached to the session role."""

INSTANCE_POLICY_DOCUMENT = {
    "Version": "2012-10-17",
    "Statement": [
        {
            "Sid": "DescribeSession",
            "Effect": "Allow",
            "Action": [
                "ec2:DescribeInstances",
                "ec2:DescribeSpotInstanceRequests",
                "ec2:DescribeSecurityGroups",
                "ec2:DescribeKeyPairs",
                "ec2:DescribeTags",
            ],
            "Resource": "*",
        },
        {
            "Sid": "ManageOwnSession",
            "Effect": "Allow",
            "Action": [
                "ec2:TerminateInstances",
                "ec2:CancelSpotInstanceRequests",
                "ec2:AuthorizeSecurityGroupIngress",
                "ec2:RevokeSecurityGroupIngress",
            ],
            "Resource": "*",
            "Condition": {"StringEquals": {"aws:ResourceTag/ManagedBy": "spotshell"}},
        },
        {
            "Sid": "CreateTaggedResources",
            "Effect": "Allow",
            "Action": [
                "ec2:RequestSpotInstances",
                "ec2:ImportKeyPair",
            ],
            "Resource": "*",
            "Condition": {"StringEquals": {"aws:RequestTag/ManagedBy": "spotshell"}},
        },
        {
            "Sid": "TagOnCreate",
            "Effect": "Allow",
            "Action": "ec2:CreateTags",
            "Resource": "*",
            "Condition": {
                "StringEquals": {"ec2:CreateAction": ["RequestSpotInstances", "ImportKeyPair"]}
            },
        },
        {
            "Sid": "SessionLogs",
            "Effect": "Allow",
            "Action": [
                "logs:CreateLogStream",
                "logs:PutLogEvents",
            ],
            "Resource": "arn:aws:logs:*:*:log-group:/spotshell/*",
        },
    ],
}
"""Least-privilege inline policy for session instances.

Changes to existing resources are limited to those tagged as managed by
spotshell; new resources may only be created carrying that tag.
"""

VALID_INSTANCE_TYPES = frozenset(
    (
        "t2.micro",
        "t2.small",
        "t2.medium",
        "t2.large",
        "t2.xlarge",
        "t2.2xlarge",
        "t3.nano",
        "t3.micro",
        "t3.small",
        "t3.medium",
        "t3.large",
        "t3.xlarge",
        "t3.2xlarge",
        "t3a.micro",
        "t3a.small",
        "t3a.medium",
        "t3a.large",
        "t3a.xlarge",
        "t3a.2xlarge",
        "m5.large",
        "m5.xlarge",
        "m5.2xlarge",
        "m5a.large",
        "m5a.xlarge",
        "m5a.2xlarge",
        "c5.large",
        "c5.xlarge",
        "c5.2xlarge",
        "r5.large",
        "r5.xlarge",
        "r5.2xlarge",
    )
)
"""Instance types accepted for admin shells.

Burstable families suit short interactive sessions; the general-purpose,
compute and memory families cover heavier one-off tasks.
"""
