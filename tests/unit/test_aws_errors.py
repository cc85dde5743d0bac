"""Tests for botocore error translation and transient retry."""

from unittest.mock import MagicMock, patch

import pytest
from botocore.exceptions import (
    ClientError,
    ConnectTimeoutError,
    EndpointConnectionError,
    NoCredentialsError,
    ReadTimeoutError,
)

from spotshell.providers.aws.errors import (
    call_aws,
    classify_client_error,
    handle_aws_errors,
    with_transient_retry,
)
from spotshell.providers.exceptions import (
    ProviderConnectionError,
    ProviderCredentialsError,
    ProviderNotFoundError,
    ProviderPermanentError,
    ProviderTransientError,
)


def client_error(code: str, status: int = 400, operation: str = "DescribeInstances") -> ClientError:
    return ClientError(
        {
            "Error": {"Code": code, "Message": f"{code} happened"},
            "ResponseMetadata": {"HTTPStatusCode": status},
        },
        operation,
    )


class TestClassifyClientError:
    """Tests for classify_client_error."""

    @pytest.mark.parametrize("code", ["RequestLimitExceeded", "Throttling", "InternalError"])
    def test_throttling_and_server_faults_are_transient(self, code: str) -> None:
        """Test rate limiting codes map to transient errors."""
        error = classify_client_error(client_error(code))
        assert isinstance(error, ProviderTransientError)
        assert error.error_code == code

    def test_server_status_is_transient_regardless_of_code(self) -> None:
        """Test any 5xx status maps to a transient error."""
        error = classify_client_error(client_error("Weird", status=503))
        assert isinstance(error, ProviderTransientError)

    @pytest.mark.parametrize(
        "code", ["NoSuchEntity", "InvalidGroup.NotFound", "InvalidKeyPair.NotFound"]
    )
    def test_missing_resources_are_not_found(self, code: str) -> None:
        """Test not-found codes map to ProviderNotFoundError."""
        error = classify_client_error(client_error(code))
        assert isinstance(error, ProviderNotFoundError)
        assert isinstance(error, ProviderPermanentError)

    def test_permission_errors_are_permanent(self) -> None:
        """Test authorization failures are permanent and keep the operation."""
        error = classify_client_error(client_error("UnauthorizedOperation"))
        assert type(error) is ProviderPermanentError
        assert error.operation == "DescribeInstances"
        assert "UnauthorizedOperation" in str(error)


def test_handle_aws_errors_translates_missing_credentials() -> None:
    """Test NoCredentialsError becomes ProviderCredentialsError."""
    with pytest.raises(ProviderCredentialsError):
        with handle_aws_errors():
            raise NoCredentialsError()


@pytest.mark.parametrize("error_class", [EndpointConnectionError, ConnectTimeoutError])
def test_handle_aws_errors_treats_connection_failures_as_transient(error_class) -> None:
    """Test unreachable endpoints raise a retryable connection error."""
    with pytest.raises(ProviderConnectionError) as exc_info:
        with handle_aws_errors():
            raise error_class(endpoint_url="https://ec2.us-east-1.amazonaws.com")

    assert isinstance(exc_info.value, ProviderTransientError)
    assert exc_info.value.error_code == error_class.__name__


def test_handle_aws_errors_read_timeout_is_not_a_connection_error() -> None:
    """Test a read timeout stays transient; the request may have been received."""
    with pytest.raises(ProviderTransientError) as exc_info:
        with handle_aws_errors():
            raise ReadTimeoutError(endpoint_url="https://ec2.us-east-1.amazonaws.com")

    assert not isinstance(exc_info.value, ProviderConnectionError)


@patch("spotshell.providers.aws.errors.time.sleep")
def test_connection_errors_are_retried(mock_sleep: MagicMock) -> None:
    func = MagicMock(
        side_effect=[
            ProviderConnectionError("unreachable", error_code="EndpointConnectionError"),
            {"ok": True},
        ]
    )

    assert with_transient_retry(func, "describe things") == {"ok": True}
    assert func.call_count == 2


@patch("spotshell.providers.aws.errors.time.sleep")
def test_transient_errors_are_retried_until_success(mock_sleep: MagicMock) -> None:
    """Test transient failures are retried with growing delays."""
    func = MagicMock(
        side_effect=[client_error("Throttling"), client_error("Throttling"), {"ok": True}]
    )

    result = with_transient_retry(func, "describe things", base_delay=1.0, max_delay=10.0)

    assert result == {"ok": True}
    assert func.call_count == 3
    delays = [call.args[0] for call in mock_sleep.call_args_list]
    assert len(delays) == 2
    assert 0.9 <= delays[0] <= 1.1
    assert 1.8 <= delays[1] <= 2.2


@patch("spotshell.providers.aws.errors.time.sleep")
def test_transient_retry_gives_up_after_max_attempts(mock_sleep: MagicMock) -> None:
    """Test the last transient error is escalated once attempts run out."""
    func = MagicMock(side_effect=client_error("RequestLimitExceeded"))

    with pytest.raises(ProviderTransientError):
        with_transient_retry(func, "describe things", max_attempts=3)

    assert func.call_count == 3
    assert mock_sleep.call_count == 2


@patch("spotshell.providers.aws.errors.time.sleep")
def test_permanent_errors_are_not_retried(mock_sleep: MagicMock) -> None:
    """Test permanent failures propagate on the first attempt."""
    func = MagicMock(side_effect=client_error("UnauthorizedOperation"))

    with pytest.raises(ProviderPermanentError):
        with_transient_retry(func, "describe things")

    assert func.call_count == 1
    mock_sleep.assert_not_called()


def test_call_aws_passes_parameters_through() -> None:
    """Test call_aws invokes the named client method with its kwargs."""
    client = MagicMock()
    client.describe_vpcs.return_value = {"Vpcs": []}

    result = call_aws(client, "describe_vpcs", Filters=[{"Name": "isDefault"}])

    assert result == {"Vpcs": []}
    client.describe_vpcs.assert_called_once_with(Filters=[{"Name": "isDefault"}])
