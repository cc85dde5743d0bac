"""CLI argument parsing and handling."""

from __future__ import annotations

from spotshell.cli.parsing import apply_cli_overrides, parse_limit, parse_max_cost

__all__ = [
    "apply_cli_overrides",
    "parse_limit",
    "parse_max_cost",
]
