import logging

from advisor.utils.logging_redaction import RedactingFilter, redact_message


def test_redacts_exchangerate_api_key_in_path():
    msg = "GET https://v6.exchangerate-api.com/v6/abcd1234efgh/latest/USD"
    assert redact_message(msg) == "GET https://v6.exchangerate-api.com/v6/[REDACTED]/latest/USD"


def test_redacts_app_id_and_bearer():
    msg = "GET /api/latest.json?app_id=secret-id&symbols=BRL Authorization: Bearer tok.en_1"
    redacted = redact_message(msg)
    assert "secret-id" not in redacted
    assert "tok.en_1" not in redacted
    assert "app_id=[REDACTED]" in redacted
    assert "Bearer [REDACTED]" in redacted


def test_redacts_api_key_assignments():
    assert redact_message("api_key=xyz123") == "api_key=[REDACTED]"
    assert redact_message('{"X-API-Key": "xyz123"}') == '{"X-API-Key": "[REDACTED]"}'


def test_leaves_plain_messages_alone():
    msg = "Stored 2 USD rates from exchangerate_api"
    assert redact_message(msg) == msg


def test_filter_rewrites_record():
    record = logging.LogRecord(
        "advisor", logging.INFO, __file__, 1, "calling %s", ("/v6/abcd1234efgh/latest/USD",), None
    )
    assert RedactingFilter().filter(record) is True
    assert record.getMessage() == "calling /v6/[REDACTED]/latest/USD"
    assert record.args == ()
