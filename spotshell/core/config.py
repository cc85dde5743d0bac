import copy
import logging
import os
import re
from pathlib import Path
from typing import Any

import yaml
from omegaconf import OmegaConf
from omegaconf.errors import InterpolationResolutionError

from spotshell.constants import (
    ADDRESS_LOOKUP_TIMEOUT_SECONDS,
    DEFAULT_ADMIN_PORT,
    DEFAULT_INSTANCE_TYPE,
    DEFAULT_KEY_ROTATION_DAYS,
    DEFAULT_PROVIDER,
    INSTANCE_RUNNING_TIMEOUT_SECONDS,
    POLL_BACKOFF_FACTOR,
    POLL_INTERVAL_SECONDS,
    POLL_MAX_INTERVAL_SECONDS,
    SPOT_FULFILLMENT_TIMEOUT_SECONDS,
    SSH_READY_TIMEOUT_SECONDS,
    WATCH_INTERVAL_SECONDS,
)
from spotshell.core.exceptions import ValidationError
from spotshell.providers import get_default_region, list_providers
from spotshell.providers.aws.constants import DEFAULT_AMI_NAME_PATTERN, VALID_INSTANCE_TYPES
from spotshell.utils import validate_port, validate_resource_name

logger = logging.getLogger(__name__)

REGION_PATTERN = r"[a-z]{2}(-gov)?-[a-z]+-\d"

DEFAULT_ADDRESS_SERVICES = [
    "https://checkip.amazonaws.com",
    "https://ipinfo.io/ip",
    "https://api.ipify.org",
    "https://icanhazip.com",
    "https://ifconfig.me/ip",
]


class ConfigLoader:
    """Load and merge YAML configuration with defaults."""

    def __init__(self) -> None:
        """Initialize ConfigLoader with provider-specific defaults."""
        self.BUILT_IN_DEFAULTS = {
            "provider": DEFAULT_PROVIDER,
            "region": get_default_region(DEFAULT_PROVIDER),
            "instance_type": DEFAULT_INSTANCE_TYPE,
            "max_cost": None,
            "key_name": "spotshell-admin-key",
            "key_dir": "~/.ssh",
            "key_rotation_days": DEFAULT_KEY_ROTATION_DAYS,
            "security_group_name": "spotshell-admin-sg",
            "admin_port": DEFAULT_ADMIN_PORT,
            "role_name": "spotshell-admin-role",
            "instance_profile_name": "spotshell-admin-role",
            "ssh_username": "ec2-user",
            "ami_id": None,
            "ami_name_pattern": DEFAULT_AMI_NAME_PATTERN,
            "spot_fulfillment_timeout": SPOT_FULFILLMENT_TIMEOUT_SECONDS,
            "instance_running_timeout": INSTANCE_RUNNING_TIMEOUT_SECONDS,
            "ssh_ready_timeout": SSH_READY_TIMEOUT_SECONDS,
            "poll_interval": POLL_INTERVAL_SECONDS,
            "poll_backoff": POLL_BACKOFF_FACTOR,
            "poll_max_interval": POLL_MAX_INTERVAL_SECONDS,
            "address_services": list(DEFAULT_ADDRESS_SERVICES),
            "address_timeout": ADDRESS_LOOKUP_TIMEOUT_SECONDS,
            "state_dir": "~/.spotshell",
            "self_terminate": True,
            "watch_interval": WATCH_INTERVAL_SECONDS,
        }

    def load_config(self, config_path: str | None = None) -> dict[str, Any]:
        """Load configuration from YAML file.

        Parameters
        ----------
        config_path : str | None
            Path to YAML config file. If None, checks SPOTSHELL_CONFIG env var,
            then falls back to spotshell.yaml

        Returns
        -------
        dict[str, Any]
            Parsed configuration with a defaults section, with all variable
            interpolations resolved

        Raises
        ------
        ValidationError
            If the file is not valid YAML or variables cannot be resolved
        """
        if config_path is None:
            config_path = os.environ.get("SPOTSHELL_CONFIG", "spotshell.yaml")

        config_file = Path(config_path)

        if not config_file.exists():
            return {"defaults": {}}

        try:
            cfg = OmegaConf.load(config_file)
        except yaml.YAMLError as e:
            logger.error("Failed to parse YAML config file %s: %s", config_file, e)
            raise ValidationError(f"Invalid YAML in {config_file}: {e}") from e
        except OSError as e:
            logger.error("Failed to read config file %s: %s", config_file, e)
            raise RuntimeError(f"Failed to read config file {config_file}: {e}") from e

        if cfg is None:
            return {"defaults": {}}

        if "vars" in cfg:
            vars_dict = OmegaConf.to_container(cfg.vars, resolve=False)
            for key, value in vars_dict.items():
                if key not in cfg:
                    cfg[key] = value

        try:
            config = OmegaConf.to_container(cfg, resolve=True, throw_on_missing=True)
        except InterpolationResolutionError as e:
            logger.error("Failed to resolve configuration variables: %s", e)
            raise ValidationError(f"Configuration variable resolution error: {e}") from e
        except (ValueError, KeyError, AttributeError) as e:
            logger.error("Failed to resolve configuration variables: %s", e)
            raise ValidationError(f"Configuration variable resolution error: {e}") from e

        config.setdefault("defaults", {})
        return config

    def get_effective_config(self, config: dict[str, Any]) -> dict[str, Any]:
        """Merge built-in defaults with the YAML defaults section.

        Parameters
        ----------
        config : dict[str, Any]
            Full configuration from YAML

        Returns
        -------
        dict[str, Any]
            Merged configuration (built-in defaults + YAML defaults)
        """
        merged = copy.deepcopy(self.BUILT_IN_DEFAULTS)

        yaml_defaults = config.get("defaults") or {}
        for key, value in yaml_defaults.items():
            if key not in merged:
                logger.warning("Ignoring unknown configuration key '%s'", key)
                continue
            merged[key] = value

        return merged

    def validate_config(self, config: dict[str, Any]) -> None:
        """Validate configuration has required fields and correct types.

        Parameters
        ----------
        config : dict[str, Any]
            Configuration to validate

        Raises
        ------
        ValidationError
            If configuration is invalid
        """
        provider = config.get("provider", DEFAULT_PROVIDER)
        available_providers = list_providers()
        if provider not in available_providers:
            raise ValidationError(
                f"Unknown provider: {provider}. Available providers: {available_providers}"
            )

        self._validate_required_fields(config)
        self._validate_numbers(config)
        self._validate_names(config)
        self._validate_optional_fields(config)

    def _validate_required_fields(self, config: dict[str, Any]) -> None:
        required_validations = {
            "region": (str, "region is required", "region must be a string"),
            "instance_type": (
                str,
                "instance_type is required",
                "instance_type must be a string",
            ),
            "key_name": (str, "key_name is required", "key_name must be a string"),
            "security_group_name": (
                str,
                "security_group_name is required",
                "security_group_name must be a string",
            ),
            "role_name": (str, "role_name is required", "role_name must be a string"),
        }

        for field, (
            expected_type,
            required_msg,
            type_msg,
        ) in required_validations.items():
            if field not in config or config[field] in ("", None):
                raise ValidationError(required_msg)

            if not isinstance(config[field], expected_type):
                raise ValidationError(type_msg)

        if not re.fullmatch(REGION_PATTERN, config["region"]):
            raise ValidationError(f"Invalid region: '{config['region']}'")

        if config["instance_type"] not in VALID_INSTANCE_TYPES:
            raise ValidationError(
                f"Unsupported instance type '{config['instance_type']}'. "
                f"Supported: {', '.join(sorted(VALID_INSTANCE_TYPES))}"
            )

    def _validate_numbers(self, config: dict[str, Any]) -> None:
        """Validate numeric settings are positive numbers of the right kind.

        Raises
        ------
        ValidationError
            If a numeric setting has the wrong type or is not positive
        """
        positive_numbers = (
            "max_cost",
            "spot_fulfillment_timeout",
            "instance_running_timeout",
            "ssh_ready_timeout",
            "poll_interval",
            "poll_max_interval",
            "address_timeout",
            "watch_interval",
        )
        for field in positive_numbers:
            value = config.get(field)
            if field == "max_cost" and value is None:
                # Unset: the ceiling follows the current spot price
                continue
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ValidationError(f"{field} must be a number")
            if value <= 0:
                raise ValidationError(f"{field} must be positive, got {value}")

        backoff = config.get("poll_backoff")
        if isinstance(backoff, bool) or not isinstance(backoff, (int, float)) or backoff < 1:
            raise ValidationError("poll_backoff must be a number >= 1")

        rotation = config.get("key_rotation_days")
        if isinstance(rotation, bool) or not isinstance(rotation, int) or rotation < 1:
            raise ValidationError("key_rotation_days must be a positive integer")

        validate_port(config.get("admin_port"))

    def _validate_names(self, config: dict[str, Any]) -> None:
        validate_resource_name(config["key_name"], "key_name")
        validate_resource_name(config["security_group_name"], "security_group_name")
        validate_resource_name(config["role_name"], "role_name")
        validate_resource_name(
            config.get("instance_profile_name"), "instance_profile_name"
        )

    def _validate_optional_fields(self, config: dict[str, Any]) -> None:
        """Validate optional configuration fields.

        Raises
        ------
        ValidationError
            If optional fields are invalid
        """
        optional_validations = {
            "key_dir": (str, "key_dir must be a string"),
            "state_dir": (str, "state_dir must be a string"),
            "ssh_username": (str, "ssh_username must be a string"),
            "ami_name_pattern": (str, "ami_name_pattern must be a string"),
            "self_terminate": (bool, "self_terminate must be a boolean"),
            "address_services": (list, "address_services must be a list"),
        }

        for field, (expected_type, type_msg) in optional_validations.items():
            if field in config and not isinstance(config[field], expected_type):
                raise ValidationError(type_msg)

        services = config.get("address_services", [])
        if not services:
            raise ValidationError("address_services must not be empty")
        for url in services:
            if not isinstance(url, str) or not url.startswith(("https://", "http://")):
                raise ValidationError(f"Invalid address service URL: {url!r}")

        if "ssh_username" in config:
            ssh_username = config["ssh_username"]
            pattern: str = r"[a-z_][a-z0-9_-]{0,31}"
            if not re.fullmatch(pattern, ssh_username):
                raise ValidationError(
                    f"Invalid ssh_username '{ssh_username}'. "
                    f"Must start with lowercase letter or underscore, "
                    f"contain only lowercase letters, numbers, underscores, "
                    f"and hyphens, and be 1-32 characters long."
                )

        ami_id = config.get("ami_id")
        if ami_id is not None and (
            not isinstance(ami_id, str) or not re.fullmatch(r"ami-[0-9a-f]{8,17}", ami_id)
        ):
            raise ValidationError(f"Invalid AMI ID format: '{ami_id}'")
