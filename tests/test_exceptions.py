import pytest

from exceptions import (
    ConfigurationError,
    DatabaseConnectionError,
    DatabaseQueryError,
    DeliveryFailure,
    InvalidIntervalError,
    InvalidURLError,
    PersistenceFailure,
    WebhookDeliveryError,
)


def test_str_carries_code_and_message():
    error = DatabaseQueryError("disk full", operation="insert notification")

    assert str(error) == "[2002] disk full"
    assert error.details == {"operation": "insert notification"}
    assert isinstance(error, PersistenceFailure)


def test_log_format_includes_details_and_cause():
    cause = ConnectionResetError("peer went away")
    error = WebhookDeliveryError("HTTP 502", delivery_id="abc", status_code=502, cause=cause)

    line = error.log_format()

    assert line.startswith("WebhookDeliveryError [5002] | HTTP 502")
    assert "'channel': 'webhook'" in line
    assert "'delivery_id': 'abc'" in line
    assert "cause=ConnectionResetError('peer went away')" in line
    assert isinstance(error, DeliveryFailure)


def test_log_format_without_context_is_short():
    assert DeliveryFailure("boom").log_format() == (
        "DeliveryFailure [5000] | boom | details={'channel': 'unknown'}"
    )
    assert ConfigurationError("bad").log_format() == "ConfigurationError [1100] | bad"


def test_connection_error_masks_credentials():
    error = DatabaseConnectionError(url="postgresql+asyncpg://app:hunter2@db:5432/pingmaster")

    assert error.details["url"] == "postgresql+asyncpg://***@db:5432/pingmaster"


@pytest.mark.parametrize(
    "error, field",
    [
        (InvalidURLError(url="ftp://example.com", reason="invalid_scheme"), "url"),
        (InvalidIntervalError(interval=0, min_interval=1, max_interval=86400), "check_interval"),
    ],
)
def test_validation_errors_are_configuration_errors(error, field):
    assert isinstance(error, ConfigurationError)
    assert error.details["field"] == field
