"""JSON log lines with per-request context and customer data masked.

Phone numbers are the contact key everywhere in this service, so they are masked down to
their last four digits (enough to correlate a log line with a chat) instead of dropped.
Message bodies and credentials never reach the log output.
"""

import contextvars
import json
import logging
import re
from datetime import datetime, timezone
from typing import Any

_PHONE_RE = re.compile(r"(?<![\w.])\+?\d{8,15}(?![\w])")
_EMAIL_RE = re.compile(r"[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}")
_SECRET_PARAM_RE = re.compile(
    r"(?i)\b(?P<key>access_token|hub\.verify_token|verify_token|token)=(?P<value>[^&\s]+)"
)
_BEARER_RE = re.compile(r"(?i)bearer\s+[A-Za-z0-9._\-]+")

PHONE_KEYS = frozenset({"phone", "phone_number", "from_number", "to", "wa_id"})
CONTENT_KEYS = frozenset({"message_text", "body", "caption", "text", "profile_name", "email"})
SECRET_KEYS = frozenset(
    {"authorization", "token", "access_token", "verify_token", "app_secret", "x-hub-signature-256"}
)

_CONTEXT: contextvars.ContextVar[dict[str, Any]] = contextvars.ContextVar("wa_log_context", default={})
_RESERVED = frozenset(logging.LogRecord("", 0, "", 0, "", (), None).__dict__) | {"message", "asctime"}


def mask_phone(value: str) -> str:
    digits = re.sub(r"\D", "", value)
    if len(digits) <= 4:
        return "***"
    return f"***{digits[-4:]}"


def scrub(text: str) -> str:
    text = _SECRET_PARAM_RE.sub(lambda match: f"{match.group('key')}=[REDACTED]", text)
    text = _BEARER_RE.sub("Bearer [REDACTED]", text)
    text = _EMAIL_RE.sub("[EMAIL]", text)
    return _PHONE_RE.sub(lambda match: mask_phone(match.group(0)), text)


def _clean(value: Any, key: str | None = None) -> Any:
    lowered = key.lower() if key else None
    if lowered in SECRET_KEYS or lowered in CONTENT_KEYS:
        return "[REDACTED]"
    if lowered in PHONE_KEYS and value is not None:
        return mask_phone(str(value))
    if isinstance(value, str):
        return scrub(value)
    if isinstance(value, dict):
        return {item_key: _clean(item, str(item_key)) for item_key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_clean(item) for item in value]
    return value


def update_log_context(**fields: Any) -> dict[str, Any]:
    merged = {**_CONTEXT.get(), **{key: value for key, value in fields.items() if value is not None}}
    _CONTEXT.set(merged)
    return merged


def clear_log_context() -> None:
    _CONTEXT.set({})


class JsonLogFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "event": scrub(record.getMessage()),
        }
        payload.update(_clean(_CONTEXT.get()))
        for key, value in record.__dict__.items():
            if key in _RESERVED or key.startswith("_"):
                continue
            # Call sites pass structured fields as extra={"extra": {...}}.
            if key == "extra" and isinstance(value, dict):
                payload.update(_clean(value))
            else:
                payload[key] = _clean(value, key)
        if record.exc_info and record.exc_info[0] is not None:
            payload["exc_type"] = record.exc_info[0].__name__
        return json.dumps(payload, ensure_ascii=False, default=str)


def configure_logging(level: str = "INFO") -> None:
    handler = logging.StreamHandler()
    handler.setFormatter(JsonLogFormatter())
    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)
