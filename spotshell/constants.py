"""Global constants for spotshell.

This module contains application-wide constants that are used across multiple
components. Provider-specific values live in ``spotshell.providers.aws.constants``.
"""

from enum import Enum

PROJECT_TAG_VALUE = "spotshell"
"""Value of the ``ManagedBy`` tag placed on every resource spotshell creates.

Quick reconnect and the instance listing rely on this tag to find instances
left behind by an earlier invocation.
"""

DEFAULT_PROVIDER = "aws"
"""Default cloud provider."""

DEFAULT_REGION = "us-east-1"
"""Default cloud provider region for instance provisioning."""

DEFAULT_INSTANCE_TYPE = "t3.small"
"""Default instance class for administrative sessions."""

DEFAULT_MAX_COST = 0.08
"""Fallback cost ceiling in USD per hour.

Used when no ceiling is configured and the region reports no spot price
history for the instance type.
"""

AUTO_BID_MULTIPLIER = 1.5
"""Headroom over the current spot price when no ceiling is configured."""

DEFAULT_ADMIN_PORT = 22
"""Port opened in the access group and probed for reachability."""

DEFAULT_KEY_ROTATION_DAYS = 90
"""Age in days after which the local key pair is rotated on the next run."""

RSA_KEY_BITS = 4096
"""Size of generated RSA keys."""

SPOT_FULFILLMENT_TIMEOUT_SECONDS = 300
"""Ceiling for the spot request to become fulfilled and bound to an instance."""

INSTANCE_RUNNING_TIMEOUT_SECONDS = 120
"""Ceiling for a fulfilled instance to reach the running state."""

SSH_READY_TIMEOUT_SECONDS = 180
"""Ceiling for the admin port to accept TCP connections."""

PROFILE_PROPAGATION_TIMEOUT_SECONDS = 60
"""Ceiling for a freshly created instance profile to become usable by EC2."""

SELF_TERMINATE_GRACE_SECONDS = 600
"""Extra time, beyond the SSH readiness ceiling, before an unused instance powers off."""

POLL_INTERVAL_SECONDS = 2.0
"""First delay between readiness polling attempts."""

POLL_BACKOFF_FACTOR = 1.5
"""Multiplier applied to the polling delay after every unsuccessful attempt."""

POLL_MAX_INTERVAL_SECONDS = 15.0
"""Upper bound for a single polling delay."""

TRANSIENT_RETRY_ATTEMPTS = 5
"""Maximum attempts for a provider call failing with a transient error."""

TRANSIENT_RETRY_BASE_DELAY = 1.0
"""First delay in seconds between transient provider retries."""

TRANSIENT_RETRY_MAX_DELAY = 20.0
"""Upper bound for the delay between transient provider retries."""

TCP_PROBE_TIMEOUT_SECONDS = 5.0
"""Connect timeout for a single admin port reachability probe."""

ADDRESS_LOOKUP_TIMEOUT_SECONDS = 10.0
"""Timeout for a single public address lookup request."""

SESSION_TERMINATE_TIMEOUT_SECONDS = 10
"""Time given to the interactive child process to exit after a forwarded signal."""

WATCH_INTERVAL_SECONDS = 60
"""Interval of the advisory watcher running next to the interactive session."""

HISTORY_DISPLAY_LIMIT = 5
"""Number of history records shown by default."""

SECONDS_PER_MINUTE = 60
"""Number of seconds in one minute."""

SECONDS_PER_HOUR = 3600
"""Number of seconds in one hour."""

SECONDS_PER_DAY = 86400
"""Number of seconds in one day."""

EXIT_ERROR = 1
"""Exit code indicating a fatal failure (after rollback)."""

EXIT_CONFIG_ERROR = 2
"""Exit code indicating a validation or configuration failure."""

EXIT_SIGINT = 130
"""Exit code used when the session was cancelled by SIGINT."""

EXIT_SIGTERM = 143
"""Exit code used when the session was cancelled by SIGTERM."""

RESOURCE_NAME_PATTERN = r"[A-Za-z0-9_-]{1,128}"
"""Allow-list for key, group, role and profile names.

Every user-controlled name passes this check before it reaches a file path or
a provider call.
"""


class SessionOutcome(str, Enum):
    """Terminal outcome recorded in history."""

    SUCCESS = "success"
    FAILED = "failed"
    CANCELLED = "cancelled"


class SessionType(str, Enum):
    """Kind of invocation recorded in history."""

    LAUNCH = "launch"
    SSH_ONLY = "ssh-only"
    DRY_RUN = "dry-run"
    RECONNECT = "reconnect"
