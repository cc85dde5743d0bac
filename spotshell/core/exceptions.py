"""Orchestration errors for spotshell sessions."""

from __future__ import annotations

import signal


class SpotshellError(Exception):
    """Base class for spotshell errors."""


class ValidationError(SpotshellError, ValueError):
    """Unsafe input or a missing precondition.

    Raised before anything is created, so no rollback is needed.
    """


class AddressResolutionError(SpotshellError):
    """The caller's public address could not be determined by any service."""


class CostCeilingExceededError(SpotshellError):
    """The current spot price is above the configured cost ceiling.

    Parameters
    ----------
    spot_price : float
        Latest observed spot price in USD per hour
    max_cost : float
        Configured ceiling in USD per hour
    """

    def __init__(self, spot_price: float, max_cost: float) -> None:
        super().__init__(
            f"Current spot price ${spot_price:.4f}/hour exceeds the cost ceiling "
            f"${max_cost:.4f}/hour"
        )
        self.spot_price = spot_price
        self.max_cost = max_cost


class ReadinessTimeoutError(SpotshellError, TimeoutError):
    """A polling step did not observe readiness within its ceiling.

    Parameters
    ----------
    description : str
        What was being awaited
    ceiling : float
        Ceiling in seconds
    attempts : int
        Number of probes made
    """

    def __init__(self, description: str, ceiling: float, attempts: int) -> None:
        super().__init__(
            f"Timed out after {ceiling:.0f}s waiting for {description} ({attempts} attempts)"
        )
        self.description = description
        self.ceiling = ceiling
        self.attempts = attempts


class RollbackStepError(SpotshellError):
    """A reversal action failed. Logged as a warning, never escalated."""


class SessionCancelled(SpotshellError):
    """The session was interrupted by a termination signal.

    Parameters
    ----------
    signum : int | None
        Signal number that caused the cancellation, if any
    """

    def __init__(self, signum: int | None = None) -> None:
        name = signal.Signals(signum).name if signum is not None else "user request"
        super().__init__(f"Session cancelled by {name}")
        self.signum = signum


class SessionFailure(SpotshellError):
    """A fatal failure annotated with the step and resource it happened on.

    Parameters
    ----------
    step : str
        Lifecycle step that failed
    cause : BaseException
        Underlying error
    resource_id : str | None
        Identifier of the resource being created or awaited, if any
    """

    def __init__(
        self, step: str, cause: BaseException, resource_id: str | None = None
    ) -> None:
        self.step = step
        self.cause = cause
        self.resource_id = resource_id
        resource = f" [{resource_id}]" if resource_id else ""
        super().__init__(f"{step}{resource}: {cause}")

    @property
    def reason(self) -> str:
        """Short machine-friendly cause category used in history records."""
        if isinstance(self.cause, ReadinessTimeoutError):
            return "timeout"
        if isinstance(self.cause, CostCeilingExceededError):
            return "cost-ceiling"
        if isinstance(self.cause, AddressResolutionError):
            return "address-resolution"
        if isinstance(self.cause, ValidationError):
            return "validation"
        return "provider-error"
