"""Translation of botocore errors into provider exceptions."""

from __future__ import annotations

import logging
import random
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import Any, TypeVar

from botocore.exceptions import (
    ClientError,
    ConnectTimeoutError,
    EndpointConnectionError,
    NoCredentialsError,
    PartialCredentialsError,
    ReadTimeoutError,
)

from spotshell.constants import (
    TRANSIENT_RETRY_ATTEMPTS,
    TRANSIENT_RETRY_BASE_DELAY,
    TRANSIENT_RETRY_MAX_DELAY,
)
from spotshell.providers.exceptions import (
    ProviderAPIError,
    ProviderConnectionError,
    ProviderCredentialsError,
    ProviderNotFoundError,
    ProviderPermanentError,
    ProviderTransientError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

TRANSIENT_ERROR_CODES = frozenset(
    (
        "RequestLimitExceeded",
        "Throttling",
        "ThrottlingException",
        "TooManyRequestsException",
        "ServiceUnavailable",
        "Unavailable",
        "InternalError",
        "InternalFailure",
        "RequestTimeout",
        "RequestTimeoutException",
        "IncorrectInstanceState",
    )
)

NOT_FOUND_ERROR_CODES = frozenset(
    (
        "NoSuchEntity",
        "InvalidGroup.NotFound",
        "InvalidKeyPair.NotFound",
        "InvalidInstanceID.NotFound",
        "InvalidInstanceID.Malformed",
        "InvalidSpotInstanceRequestID.NotFound",
        "InvalidPermission.NotFound",
    )
)


def classify_client_error(error: ClientError) -> ProviderAPIError:
    """Map a botocore ClientError to the provider error taxonomy.

    Parameters
    ----------
    error : ClientError
        Error raised by a boto3 client call

    Returns
    -------
    ProviderAPIError
        Transient, not-found or permanent provider error
    """
    details = error.response.get("Error", {})
    code = details.get("Code", "Unknown")
    message = details.get("Message", str(error))
    operation = getattr(error, "operation_name", None)
    status = error.response.get("ResponseMetadata", {}).get("HTTPStatusCode", 0)

    if code in NOT_FOUND_ERROR_CODES:
        return ProviderNotFoundError(message, error_code=code, operation=operation)

    if code in TRANSIENT_ERROR_CODES or status >= 500:
        return ProviderTransientError(message, error_code=code, operation=operation)

    return ProviderPermanentError(message, error_code=code, operation=operation)


@contextmanager
def handle_aws_errors() -> Iterator[None]:
    """Convert botocore exceptions raised in the block into provider errors.

    Raises
    ------
    ProviderCredentialsError
        If credentials are missing or incomplete
    ProviderConnectionError
        If the endpoint cannot be reached
    ProviderTransientError
        For throttling, server-side faults and read timeouts
    ProviderNotFoundError
        If the addressed resource does not exist
    ProviderPermanentError
        For every other API error
    """
    try:
        yield
    except (NoCredentialsError, PartialCredentialsError) as e:
        raise ProviderCredentialsError(str(e)) from e
    except ClientError as e:
        raise classify_client_error(e) from e
    except (EndpointConnectionError, ConnectTimeoutError) as e:
        raise ProviderConnectionError(str(e), error_code=e.__class__.__name__) from e
    except ReadTimeoutError as e:
        raise ProviderTransientError(str(e), error_code=e.__class__.__name__) from e


def with_transient_retry(
    func: Callable[[], T],
    description: str,
    max_attempts: int = TRANSIENT_RETRY_ATTEMPTS,
    base_delay: float = TRANSIENT_RETRY_BASE_DELAY,
    max_delay: float = TRANSIENT_RETRY_MAX_DELAY,
) -> T:
    """Call ``func`` and retry transient provider errors with exponential backoff.

    Parameters
    ----------
    func : Callable[[], T]
        Zero-argument callable performing one provider request
    description : str
        Operation description used in log messages
    max_attempts : int
        Maximum number of attempts before the error is escalated
    base_delay : float
        Delay before the second attempt in seconds
    max_delay : float
        Upper bound for a single delay in seconds

    Returns
    -------
    T
        Return value of ``func``

    Raises
    ------
    ProviderTransientError
        If every attempt failed with a transient error
    """
    for attempt in range(max_attempts):
        try:
            with handle_aws_errors():
                return func()
        except ProviderTransientError as e:
            if attempt == max_attempts - 1:
                logger.error(
                    "%s failed after %d attempts: %s", description, max_attempts, e
                )
                raise

            delay = min(base_delay * (2**attempt), max_delay)
            delay *= random.uniform(0.9, 1.1)
            logger.warning(
                "%s hit a transient error (%s), retrying in %.1fs (attempt %d/%d)",
                description,
                e.error_code,
                delay,
                attempt + 1,
                max_attempts,
            )
            time.sleep(delay)

    raise ProviderTransientError(
        f"{description} did not complete after {max_attempts} attempts",
        error_code="RetriesExhausted",
    )


def call_aws(client: Any, operation: str, **kwargs: Any) -> Any:
    """Invoke a boto3 client operation with error translation and transient retry.

    Parameters
    ----------
    client : Any
        Boto3 client
    operation : str
        Snake-case client method name (e.g. ``describe_security_groups``)
    **kwargs : Any
        Request parameters

    Returns
    -------
    Any
        Raw response dictionary
    """
    method = getattr(client, operation)
    return with_transient_retry(lambda: method(**kwargs), operation)
