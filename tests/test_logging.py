import logging

import pytest

from app.core.middleware import correlation_id_var
from app.utils.my_logging import CorrelationIdFilter, SecretRedactingFilter, redact_secrets


@pytest.mark.parametrize(
    "text, expected",
    [
        ("Authorization: Bearer ya29.a0Af", "Authorization: Bearer ***"),
        ("callback?code=4/0AfJ&state=google:web:u:n", "callback?code=***&state=google:web:u:n"),
        ('{"access_token": "at-1", "expires_in": 3599}', '{"access_token": "***", "expires_in": 3599}'),
        ("refresh_token=rt-1&client_secret=shh", "refresh_token=***&client_secret=***"),
    ],
)
def test_redact_secrets(text, expected):
    assert redact_secrets(text) == expected


def test_redact_leaves_status_codes_and_mock_token_names_alone():
    text = "google: refresh rejected (status_code=400) for mock_refresh_token_google_1"
    assert redact_secrets(text) == text


def make_record(msg, *args):
    return logging.LogRecord("app.test", logging.ERROR, __file__, 1, msg, args, None)


def test_secret_filter_rewrites_formatted_message():
    record = make_record("google rejected (%s): %s", 400, '{"error": "invalid_grant", "code": "abc"}')

    assert SecretRedactingFilter().filter(record) is True
    assert record.getMessage() == 'google rejected (400): {"error": "invalid_grant", "code": "***"}'


def test_correlation_filter_uses_current_request_id():
    record = make_record("hello")
    token = correlation_id_var.set("req-42")
    try:
        CorrelationIdFilter().filter(record)
    finally:
        correlation_id_var.reset(token)

    assert record.correlation_id == "req-42"


def test_correlation_filter_outside_request():
    record = make_record("hello")
    CorrelationIdFilter().filter(record)
    assert record.correlation_id == "-"
