"""CLI argument parsing and parameter conversion utilities."""

from __future__ import annotations

from typing import Any

from spotshell.core.exceptions import ValidationError


def parse_max_cost(max_cost: str | float | int) -> float:
    """Parse the cost ceiling given on the command line.

    Parameters
    ----------
    max_cost : str | float | int
        Ceiling in USD per hour; a leading ``$`` is accepted

    Returns
    -------
    float
        Positive ceiling

    Raises
    ------
    ValidationError
        If the value is not a positive number
    """
    if isinstance(max_cost, bool):
        raise ValidationError(f"Invalid max cost: {max_cost!r}")

    text = str(max_cost).strip().lstrip("$")
    try:
        value = float(text)
    except ValueError:
        raise ValidationError(f"Invalid max cost: '{max_cost}' is not a number") from None

    if value <= 0 or value != value:
        raise ValidationError(f"Invalid max cost: {max_cost}. Must be a positive amount")

    return value


def parse_limit(limit: str | int) -> int:
    """Parse the ``--limit`` of the history command.

    Raises
    ------
    ValidationError
        If the value is not a positive integer
    """
    try:
        value = int(limit)
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid limit: '{limit}' is not an integer") from None

    if value < 1:
        raise ValidationError(f"Invalid limit: {value}. Must be at least 1")

    return value


def apply_cli_overrides(
    config: dict[str, Any],
    instance_type: str | None = None,
    region: str | None = None,
    max_cost: str | float | None = None,
) -> None:
    """Apply CLI option overrides to merged configuration.

    Parameters
    ----------
    config : dict[str, Any]
        Configuration dictionary to modify in-place
    instance_type : str | None
        EC2 instance type
    region : str | None
        AWS region
    max_cost : str | float | None
        Cost ceiling in USD per hour
    """
    if instance_type is not None:
        config["instance_type"] = str(instance_type)

    if region is not None:
        config["region"] = str(region)

    if max_cost is not None:
        config["max_cost"] = parse_max_cost(max_cost)


__all__ = [
    "apply_cli_overrides",
    "parse_limit",
    "parse_max_cost",
]
