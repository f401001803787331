"""
Channel address normalization.

A (channel, raw address) pair is canonicalized into the exact string stored
on outbound jobs, so job submission and verification resume look up the
same key regardless of how the provider formatted the sender.
"""

from __future__ import annotations

import re

from app.core.errors import ValidationError

__all__ = ["CHANNELS", "address_hint", "normalize_address"]

CHANNELS = ("voice", "sms", "email", "whatsapp")

_WHATSAPP_PREFIX = "whatsapp:"


def _digits(value: str) -> str:
    return re.sub(r"\D", "", value)


def normalize_address(channel: str, raw: str | None) -> str:
    """
    Canonicalize a target address for a channel.

    - whatsapp: ``whatsapp:+<digits>``
    - voice / sms: ``+<digits>`` (a ``whatsapp:`` prefix is stripped)
    - email: trimmed and lower-cased

    Raises:
        ValidationError: unknown channel.
    """
    if channel not in CHANNELS:
        raise ValidationError(f"Unsupported channel: {channel}", field="channel")

    value = (raw or "").strip()
    if not value:
        return ""

    if channel == "email":
        return value.lower()

    if channel == "whatsapp":
        if value.startswith(_WHATSAPP_PREFIX):
            value = value[len(_WHATSAPP_PREFIX):]
        return f"{_WHATSAPP_PREFIX}+{_digits(value)}"

    if value.startswith(_WHATSAPP_PREFIX):
        value = value[len(_WHATSAPP_PREFIX):]
    return f"+{_digits(value)}"


def address_hint(target_address: str | None) -> str:
    """
    Redaction-safe hint for listings: ``j•••@example.com`` or ``+34•••18``.
    """
    raw = (target_address or "").strip().lower()
    value = raw.split(":", 1)[1] if ":" in raw else raw

    if "@" in value:
        user, _, domain = value.partition("@")
        return f"{user[:1]}•••@{domain}"

    phone = re.sub(r"[^\d+]", "", value)
    last2 = _digits(phone)[-2:]
    country = phone[:3] if phone.startswith("+") else phone[:2]
    return f"{country}•••{last2}"
