"""Provider-agnostic exceptions raised by cloud provider clients."""

from __future__ import annotations


class ProviderError(Exception):
    """Base class for all cloud provider errors."""


class ProviderCredentialsError(ProviderError):
    """Raised when provider credentials are missing or cannot be resolved."""


class ProviderAPIError(ProviderError):
    """Raised when a provider API call returns an error.

    Parameters
    ----------
    message : str
        Human-readable description of the failure
    error_code : str | None
        Provider error code (e.g. ``UnauthorizedOperation``)
    operation : str | None
        Name of the provider operation that failed
    """

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        operation: str | None = None,
    ) -> None:
        super().__init__(message)
        self.error_code = error_code
        self.operation = operation

    def __str__(self) -> str:
        message = super().__str__()
        if self.operation and self.error_code:
            return f"{self.operation} failed ({self.error_code}): {message}"
        if self.error_code:
            return f"{self.error_code}: {message}"
        return message


class ProviderTransientError(ProviderAPIError):
    """Rate limiting or a momentary fault; safe to retry with backoff."""


class ProviderConnectionError(ProviderTransientError):
    """The provider endpoint could not be reached; the request was never sent."""


class ProviderPermanentError(ProviderAPIError):
    """Permission denied or malformed request; retrying will not help."""


class ProviderNotFoundError(ProviderPermanentError):
    """The addressed resource does not exist.

    Reversal operations treat this as success.
    """
