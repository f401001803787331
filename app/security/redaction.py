"""
Redaction of sensitive values before they are persisted or logged.

Applied once at the Outbox / Runner / audit boundary. Structure is kept
intact: only leaf values are replaced, so redacted documents can still be
rendered into inbox items and audit rows.
"""

from __future__ import annotations

import re
from typing import Any

__all__ = [
    "REDACTED",
    "redact_error",
    "redact_sensitive",
    "redact_text",
]

REDACTED = "[REDACTED]"

_SAFE_KEYS = frozenset(
    {"id", "created_at", "updated_at", "timestamp", "at", "date", "dedupe_key", "event_type"}
)
_SECRET_KEY_MARKERS = (
    "password",
    "secret",
    "token",
    "api_key",
    "apikey",
    "authorization",
    "private_key",
)

_UUID_RE = re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.I)
_ISO_DATETIME_RE = re.compile(
    r"^\d{4}-\d{2}-\d{2}(?:[T ]\d{2}:\d{2}(?::\d{2}(?:\.\d+)?)?(?:Z|[+-]\d{2}:?\d{2})?)?$"
)
# Provider resource ids (CallSid, MessageSid...) are identifiers, not secrets
_TWILIO_SID_RE = re.compile(r"^[A-Z]{2}[0-9a-f]{32}$")

_OTP_RE = re.compile(r"\b\d{4,8}\b")
_CARD_RE = re.compile(r"\b\d{4}[\s-]?\d{4}[\s-]?\d{4}[\s-]?\d{4,7}\b")
_MASKED_CARD_RE = re.compile(r"\*{4,}\d{4}\b")
_CVV_RE = re.compile(r"\b(?:cvv|cvc|security\s+code)[\s:]*\d{3,4}\b", re.I)
_SSN_RE = re.compile(r"\b\d{3}-\d{2}-\d{4}\b")
_NATIONAL_ID_RE = re.compile(r"\b[A-Z]\d{7,8}[A-Z]?\b|\b\d{8}[A-Z]\b", re.I)
_EMAIL_RE = re.compile(r"\b[a-zA-Z0-9._%+-]+@([a-zA-Z0-9.-]+\.[a-zA-Z]{2,})\b")
_PHONE_RE = re.compile(r"(?<![\w+])\+?\d[\d\s-]{6,}\d(?!\w)")
_BEARER_RE = re.compile(
    r"\b(authorization|bearer|api[_-]?key|access[_-]?token|refresh[_-]?token)([\s:=]+)[a-zA-Z0-9_\-.]{16,}",
    re.I,
)
_LONG_OPAQUE_RE = re.compile(r"\b[a-zA-Z0-9_\-]{48,}\b")
_EXPIRY_RE = re.compile(r"\b(0[1-9]|1[0-2])/(\d{2}|\d{4})\b")
_ACCOUNT_RE = re.compile(r"\b\d{8,17}\b")


def _is_safe_key(key: str) -> bool:
    lowered = key.lower()
    return lowered in _SAFE_KEYS or lowered.endswith("_id") or lowered.endswith("_at")


def _is_secret_key(key: str) -> bool:
    lowered = key.lower()
    if lowered == "key":
        return True
    return any(marker in lowered for marker in _SECRET_KEY_MARKERS)


def _mask_phone(match: re.Match) -> str:
    raw = match.group(0)
    digits = re.sub(r"\D", "", raw)
    if len(digits) < 8 or _ISO_DATETIME_RE.match(raw.strip()):
        return raw
    prefix = "+" + digits[:2] if raw.startswith("+") else digits[:2]
    return f"{prefix} {REDACTED} {digits[-4:]}"


def redact_text(value: str, context: str | None = None) -> str:
    """
    Mask sensitive patterns inside free text.

    Args:
        value: Text to scan.
        context: Optional hint ("auth", "otp", "verification", "bank"...) that
            enables the more aggressive numeric rules.
    """
    if not value:
        return value

    stripped = value.strip()
    if _UUID_RE.match(stripped) or _ISO_DATETIME_RE.match(stripped) or _TWILIO_SID_RE.match(stripped):
        return value

    ctx = (context or "").lower()
    redacted = value

    if ctx == "auth" or "otp" in ctx or "verification" in ctx:
        redacted = _OTP_RE.sub("[OTP_REDACTED]", redacted)

    redacted = _CARD_RE.sub("[CARD_REDACTED]", redacted)
    redacted = _MASKED_CARD_RE.sub("[CARD_REDACTED]", redacted)
    redacted = _CVV_RE.sub("[CVV_REDACTED]", redacted)
    redacted = _SSN_RE.sub("[SSN_REDACTED]", redacted)
    redacted = _NATIONAL_ID_RE.sub(
        lambda m: "[ID_REDACTED]" if re.search(r"[A-Z]", m.group(0), re.I) else m.group(0),
        redacted,
    )
    redacted = _EMAIL_RE.sub(lambda m: f"{REDACTED}@{m.group(1)}", redacted)
    redacted = _BEARER_RE.sub(lambda m: f"{m.group(1)}{m.group(2)}[TOKEN_REDACTED]", redacted)
    redacted = _PHONE_RE.sub(_mask_phone, redacted)
    redacted = _LONG_OPAQUE_RE.sub("[API_SECRET_REDACTED]", redacted)
    redacted = _EXPIRY_RE.sub("[EXPIRY_REDACTED]", redacted)

    if "bank" in ctx or "account" in ctx or "financial" in ctx:
        redacted = _ACCOUNT_RE.sub("[ACCOUNT_REDACTED]", redacted)

    return redacted


def redact_sensitive(data: Any, context: str | None = None) -> Any:
    """
    Recursively redact a JSON-like document.

    Secret-looking keys are replaced wholesale; identifier and timestamp keys
    pass through untouched; every other string leaf goes through redact_text.
    """
    if data is None or isinstance(data, (bool, int, float)):
        return data

    if isinstance(data, str):
        return redact_text(data, context)

    if isinstance(data, (list, tuple)):
        return [redact_sensitive(item, context) for item in data]

    if isinstance(data, dict):
        redacted: dict[str, Any] = {}
        for key, value in data.items():
            key_str = str(key)
            if _is_safe_key(key_str):
                redacted[key] = value
            elif _is_secret_key(key_str):
                redacted[key] = REDACTED
            else:
                redacted[key] = redact_sensitive(value, context)
        return redacted

    return data


def redact_error(error: BaseException | None) -> dict[str, Any] | None:
    """Loggable view of an exception: type, redacted message, optional code."""
    if error is None:
        return None

    view: dict[str, Any] = {
        "name": type(error).__name__,
        "message": redact_text(str(error)),
    }
    code = getattr(error, "code", None)
    if code:
        view["code"] = code
    return view
