import json
import logging

from app.infra.logging import RedactingJsonFormatter, clear_log_context, update_log_context


def _format(message: str, **extra) -> dict:
    record = logging.LogRecord("app.test", logging.INFO, __file__, 1, message, (), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return json.loads(RedactingJsonFormatter().format(record))


def test_sensitive_extra_keys_are_redacted():
    payload = _format(
        "login_succeeded",
        extra={"username": "a0001", "password": "1234", "account_number": "123-456"},
    )

    assert payload["message"] == "login_succeeded"
    assert payload["username"] == "a0001"
    assert payload["password"] == "[REDACTED]"
    assert payload["account_number"] == "[REDACTED]"


def test_free_text_tokens_are_masked():
    payload = _format("retrying with Bearer abc.def.ghi for user@example.com")

    assert "abc.def.ghi" not in payload["message"]
    assert "user@example.com" not in payload["message"]


def test_request_context_is_attached():
    update_log_context(request_id="req-1", user_id="a0001", role="BRANCH", branch="울산")
    try:
        payload = _format("refund_created")
    finally:
        clear_log_context()

    assert payload["request_id"] == "req-1"
    assert payload["branch"] == "울산"
    assert "request_id" not in _format("after_clear")
