"""CLI entry point for spotshell."""

from __future__ import annotations

import os
import signal
import sys
from typing import Any

import fire

from spotshell.constants import (
    EXIT_CONFIG_ERROR,
    EXIT_ERROR,
    EXIT_SIGINT,
    EXIT_SIGTERM,
)
from spotshell.core.exceptions import SessionCancelled, SessionFailure, ValidationError
from spotshell.core.signals import setup_signal_handlers
from spotshell.logging import configure_logging
from spotshell.providers import ProviderAPIError, ProviderCredentialsError
from spotshell.providers.aws.utils import get_aws_credentials_error_message

COMMANDS = ("launch", "history", "reconnect", "keys", "init")


def get_spotshell_class() -> type:
    """Get Spotshell class on-demand to avoid circular imports.

    Returns
    -------
    type
        Spotshell CLI class
    """
    from spotshell.__main__ import Spotshell

    return Spotshell


def build_command(argv: list[str]) -> list[str]:
    """Make ``launch`` the command when none is given.

    Parameters
    ----------
    argv : list[str]
        Arguments after the program name

    Returns
    -------
    list[str]
        Arguments for Fire
    """
    if argv and (argv[0] in COMMANDS or argv[0] in ("-h", "--help")):
        return list(argv)
    return ["launch", *argv]


def exit_code_for_signal(signum: int | None) -> int:
    if signum == signal.SIGTERM:
        return EXIT_SIGTERM
    return EXIT_SIGINT


def handle_cancelled(error: SessionCancelled, debug_mode: bool) -> None:
    """Handle a session cancelled by a signal.

    Raises
    ------
    SessionCancelled
        Re-raised if debug mode is enabled
    """
    if debug_mode:
        raise

    print(f"{error}; all session resources were released", file=sys.stderr)
    sys.exit(exit_code_for_signal(error.signum))


def handle_session_failure(error: SessionFailure, debug_mode: bool) -> None:
    """Handle a failed session after its rollback completed.

    Parameters
    ----------
    error : SessionFailure
        Failure annotated with the step it happened in
    debug_mode : bool
        Whether debug mode is enabled

    Raises
    ------
    SessionFailure
        Re-raised if debug mode is enabled
    """
    if debug_mode:
        raise

    cause = error.cause

    if isinstance(cause, ValidationError):
        print(f"Validation error: {cause}", file=sys.stderr)
        sys.exit(EXIT_CONFIG_ERROR)

    if isinstance(cause, ProviderCredentialsError):
        print(get_aws_credentials_error_message(), file=sys.stderr)
        sys.exit(EXIT_ERROR)

    print(f"Session failed while trying to {error.step}\n", file=sys.stderr)

    if isinstance(cause, ProviderAPIError):
        print_api_error_hint(cause)
    else:
        print(f"  {cause}", file=sys.stderr)

    if error.resource_id:
        print(f"\nResource: {error.resource_id}", file=sys.stderr)
    print("\nAll per-session resources were rolled back.", file=sys.stderr)
    sys.exit(EXIT_ERROR)


def print_api_error_hint(error: ProviderAPIError) -> None:
    """Print a provider error with a remedy for the common cases."""
    error_code = error.error_code
    error_msg = str(error)

    if error_code in ("UnauthorizedOperation", "AccessDenied", "AccessDeniedException"):
        print("Insufficient IAM permissions\n", file=sys.stderr)
        print("Your credentials need permission to manage:", file=sys.stderr)
        print("  - Spot requests and instances (RequestSpotInstances, ...)", file=sys.stderr)
        print("  - Security groups and key pairs", file=sys.stderr)
        print("  - IAM roles and instance profiles", file=sys.stderr)
    elif error_code in ("price-too-low", "capacity-not-available"):
        print("Spot capacity unavailable at this price\n", file=sys.stderr)
        print("Fix it:", file=sys.stderr)
        print("  spotshell --max-cost 0.12", file=sys.stderr)
        print("  spotshell --instance-type t3.micro", file=sys.stderr)
    elif error_code in ("MaxSpotInstanceCountExceeded", "InstanceLimitExceeded"):
        print("Cloud quota exceeded\n", file=sys.stderr)
        print("  https://console.aws.amazon.com/servicequotas/", file=sys.stderr)
    elif error_code == "NoDefaultVpc":
        print("No default VPC in this region\n", file=sys.stderr)
        print("Fix it:", file=sys.stderr)
        print("  aws ec2 create-default-vpc", file=sys.stderr)
    elif error_code in ("ExpiredToken", "RequestExpired", "ExpiredTokenException"):
        print("Cloud credentials have expired\n", file=sys.stderr)
        print("Fix it:", file=sys.stderr)
        print("  aws sso login           # If using AWS SSO", file=sys.stderr)
        print("  aws configure           # Re-configure credentials", file=sys.stderr)
    else:
        print(f"  Cloud API error: {error_msg}", file=sys.stderr)


def handle_value_error(error: ValueError, debug_mode: bool) -> None:
    """Handle a configuration or argument error.

    Raises
    ------
    ValueError
        Re-raised if debug mode is enabled
    """
    if debug_mode:
        raise

    print(f"Configuration error: {error}", file=sys.stderr)
    sys.exit(EXIT_CONFIG_ERROR)


def handle_credentials_error(debug_mode: bool) -> None:
    """Handle provider credentials error.

    Raises
    ------
    ProviderCredentialsError
        Re-raised if debug mode is enabled
    """
    if debug_mode:
        raise

    print(get_aws_credentials_error_message(), file=sys.stderr)
    sys.exit(EXIT_ERROR)


def handle_runtime_error(error: RuntimeError, debug_mode: bool) -> None:
    """Handle unexpected runtime error.

    Raises
    ------
    RuntimeError
        Re-raised if debug mode is enabled
    """
    if debug_mode:
        raise

    print(f"Unexpected error: {error}", file=sys.stderr)
    sys.exit(EXIT_ERROR)


def main(argv: list[str] | None = None, cli: Any = None) -> None:
    """Entry point for Fire CLI with graceful error handling.

    Parameters
    ----------
    argv : list[str] | None
        Arguments after the program name; defaults to ``sys.argv[1:]``
    cli : Any
        Component handed to Fire; defaults to a new ``Spotshell``

    Notes
    -----
    Fire maps the public methods of ``Spotshell`` to commands. Errors are
    translated into the documented exit codes unless ``SPOTSHELL_DEBUG=1``.
    """
    argv = sys.argv[1:] if argv is None else argv
    debug_mode = os.environ.get("SPOTSHELL_DEBUG") == "1"
    verbose = "--verbose" in argv or debug_mode

    configure_logging(verbose=verbose)
    setup_signal_handlers()

    if cli is None:
        cli = get_spotshell_class()()

    try:
        fire.Fire(cli, command=build_command(argv))
    except SessionCancelled as e:
        handle_cancelled(e, debug_mode)
    except KeyboardInterrupt:
        if debug_mode:
            raise
        sys.exit(EXIT_SIGINT)
    except SessionFailure as e:
        handle_session_failure(e, debug_mode)
    except ProviderCredentialsError:
        handle_credentials_error(debug_mode)
    except ProviderAPIError as e:
        if debug_mode:
            raise
        print_api_error_hint(e)
        sys.exit(EXIT_ERROR)
    except ValueError as e:
        handle_value_error(e, debug_mode)
    except RuntimeError as e:
        handle_runtime_error(e, debug_mode)
