#!/usr/bin/env python3
"""spotshell - ephemeral spot instance admin shells."""

from __future__ import annotations

import logging
import os
import sys
from collections.abc import Callable
from pathlib import Path
from typing import Any

from spotshell.cli.main import main
from spotshell.cli.parsing import apply_cli_overrides, parse_limit
from spotshell.constants import EXIT_ERROR, HISTORY_DISPLAY_LIMIT
from spotshell.core.config import ConfigLoader
from spotshell.core.history import (
    HistoryRecorder,
    format_cost_summary,
    format_history,
    format_phase_metrics,
)
from spotshell.core.interfaces import ProviderClient
from spotshell.core.orchestrator import SessionOrchestrator
from spotshell.core.session import Session
from spotshell.core.signals import set_cleanup_instance
from spotshell.providers import get_provider
from spotshell.templates import CONFIG_TEMPLATE
from spotshell.utils import log_and_print_error


class Spotshell:
    """Main CLI interface for spotshell.

    Parameters
    ----------
    provider_factory : Callable[[str], ProviderClient] | None
        Builds a provider client for a region; defaults to the configured
        provider's client class
    orchestrator_factory : Callable[..., SessionOrchestrator] | None
        Builds the session orchestrator, injectable for tests
    """

    def __init__(
        self,
        provider_factory: Callable[[str], ProviderClient] | None = None,
        orchestrator_factory: Callable[..., SessionOrchestrator] | None = None,
    ) -> None:
        self._config_loader = ConfigLoader()
        self._provider_factory_override = provider_factory
        self._orchestrator_factory = orchestrator_factory or SessionOrchestrator

    def _create_provider(self, config: dict[str, Any]) -> ProviderClient:
        if self._provider_factory_override is not None:
            return self._provider_factory_override(config["region"])
        client_class = get_provider(config["provider"])
        return client_class(region=config["region"])

    def _load_config(
        self,
        instance_type: str | None = None,
        region: str | None = None,
        max_cost: str | float | None = None,
    ) -> dict[str, Any]:
        config = self._config_loader.load_config()
        merged = self._config_loader.get_effective_config(config)
        apply_cli_overrides(
            merged, instance_type=instance_type, region=region, max_cost=max_cost
        )
        self._config_loader.validate_config(merged)
        return merged

    def _run_session(
        self, orchestrator: SessionOrchestrator, action: Callable[[], Session]
    ) -> Session:
        set_cleanup_instance(orchestrator)
        try:
            return action()
        finally:
            set_cleanup_instance(None)

    @staticmethod
    def _print_summary(session: Session | None, show_metrics: bool, show_costs: bool) -> None:
        if session is None:
            return
        if show_metrics:
            print(format_phase_metrics(session.phase_seconds))
        if show_costs:
            print(
                format_cost_summary(session.spot_price, session.estimated_cost, session.max_cost)
            )

    @staticmethod
    def _set_verbose(verbose: bool) -> None:
        if verbose:
            logging.getLogger().setLevel(logging.DEBUG)

    def launch(
        self,
        instance_type: str | None = None,
        region: str | None = None,
        max_cost: str | float | None = None,
        dry_run: bool = False,
        ssh_only: bool = False,
        skip_prerequisites: bool = False,
        force_rotate: bool = False,
        show_history: bool = False,
        show_metrics: bool = False,
        show_costs: bool = False,
        quick_reconnect: bool = False,
        verbose: bool = False,
    ) -> None:
        """Launch a spot instance, open a shell on it and terminate it on exit.

        Parameters
        ----------
        instance_type : str | None
            Instance type override
        region : str | None
            AWS region override
        max_cost : str | float | None
            Cost ceiling in USD per hour
        dry_run : bool
            Validate and show what would be done without changing anything
        ssh_only : bool
            Only create, rotate or register the key pair
        skip_prerequisites : bool
            Skip environment checks (unsafe)
        force_rotate : bool
            Rotate the key pair regardless of its age
        show_history : bool
            Display recent sessions and exit
        show_metrics : bool
            Print how long each provisioning phase took
        show_costs : bool
            Print the spot price, cost ceiling and estimated session cost
        quick_reconnect : bool
            Reconnect to a running spotshell instance instead of launching
        verbose : bool
            Enable debug logging
        """
        self._set_verbose(verbose)

        if show_history:
            self.history()
            return

        if quick_reconnect:
            self.reconnect(region=region)
            return

        config = self._load_config(
            instance_type=instance_type, region=region, max_cost=max_cost
        )
        orchestrator = self._orchestrator_factory(
            self._create_provider(config),
            config,
            dry_run=dry_run,
            ssh_only=ssh_only,
            skip_prerequisites=skip_prerequisites,
            force_rotate=force_rotate,
        )
        try:
            self._run_session(orchestrator, orchestrator.run)
        finally:
            self._print_summary(orchestrator.session, show_metrics, show_costs)

    def keys(self, force_rotate: bool = False, dry_run: bool = False, verbose: bool = False) -> None:
        """Create, rotate or re-register the admin key pair only."""
        self.launch(ssh_only=True, force_rotate=force_rotate, dry_run=dry_run, verbose=verbose)

    def reconnect(self, region: str | None = None, verbose: bool = False) -> None:
        """Open a shell on a running spotshell instance, terminating it afterwards."""
        self._set_verbose(verbose)
        config = self._load_config(region=region)
        orchestrator = self._orchestrator_factory(self._create_provider(config), config)
        self._run_session(orchestrator, orchestrator.reconnect)

    def history(self, limit: int = HISTORY_DISPLAY_LIMIT) -> None:
        """Show the most recent session outcomes."""
        config = self._load_config()
        recorder = HistoryRecorder(Path(config["state_dir"]).expanduser() / "history.jsonl")
        print(format_history(recorder.recent(parse_limit(limit))))

    def init(self, force: bool = False) -> None:
        """Create a default spotshell.yaml configuration file."""
        config_path = os.environ.get("SPOTSHELL_CONFIG", "spotshell.yaml")
        config_file = Path(config_path)

        if config_file.exists() and not force:
            log_and_print_error(
                "%s already exists. Use --force to overwrite.",
                config_path,
            )
            sys.exit(EXIT_ERROR)

        config_file.parent.mkdir(parents=True, exist_ok=True)

        with open(config_file, "w") as f:
            f.write(CONFIG_TEMPLATE)

        print(f"Created {config_path} configuration file.")


if __name__ == "__main__":
    main()
