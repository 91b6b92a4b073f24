import json
import logging

from wa_dashboard.infra.logging import (
    JsonLogFormatter,
    clear_log_context,
    mask_phone,
    scrub,
    update_log_context,
)


def _format(message: str, **extra) -> dict:
    record = logging.LogRecord("wa_dashboard.test", logging.INFO, __file__, 1, message, (), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return json.loads(JsonLogFormatter().format(record))


def test_mask_phone_keeps_last_four_digits():
    assert mask_phone("+1 (555) 010-9876") == "***9876"
    assert mask_phone("12") == "***"


def test_scrub_masks_numbers_and_tokens_in_free_text():
    text = scrub("send to 15550109876 failed url=https://x/y?access_token=abc123&hub.verify_token=zz")

    assert "15550109876" not in text
    assert "***9876" in text
    assert "abc123" not in text
    assert "zz" not in text


def test_structured_fields_are_masked_and_bodies_dropped():
    payload = _format(
        "message_stored",
        extra={"from_number": "15550109876", "message_text": "my card is 4111", "workflow_id": 3},
    )

    assert payload["event"] == "message_stored"
    assert payload["from_number"] == "***9876"
    assert payload["message_text"] == "[REDACTED]"
    assert payload["workflow_id"] == 3


def test_request_context_is_merged_until_cleared():
    update_log_context(request_id="req-1", path="/api/messages/15550109876")
    try:
        payload = _format("request")
    finally:
        clear_log_context()

    assert payload["request_id"] == "req-1"
    assert payload["path"] == "/api/messages/***9876"
    assert "request_id" not in _format("request")
