"""Masking of sensitive values in log output.

Wallet addresses keep their prefix with the trailing 6 characters masked,
IPv4 addresses lose their last octet, and IPv6 addresses and generic tokens
lose their trailing 4 characters. Secrets are replaced entirely.

The ``RedactingFilter`` is attached to every log handler by
``configure_logging`` so that masking applies on all log call paths, not
only where call sites remember to mask.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable
from typing import Any

ADDRESS_MASK = "******"
TOKEN_MASK = "****"
IPV4_MASK = "***"
REDACTED = "[Redacted]"

_TRACEBACK_FORMATTER = logging.Formatter()

_EVM_ADDRESS_RE = re.compile(r"\b0x[a-fA-F0-9]{40}\b")
_IPV4_RE = re.compile(r"\b(\d{1,3})\.(\d{1,3})\.(\d{1,3})\.(\d{1,3})\b")
_IPV6_RE = re.compile(
    r"(?<![\w:])(?:"
    r"(?:[0-9a-fA-F]{1,4}:){7}[0-9a-fA-F]{1,4}"
    r"|(?:[0-9a-fA-F]{1,4}:){0,6}[0-9a-fA-F]{0,4}::(?:[0-9a-fA-F]{1,4}:){0,6}[0-9a-fA-F]{0,4}"
    r")(?![\w:])"
)


def mask_address(address: str | None) -> str:
    """Mask the trailing 6 characters of a wallet address."""
    if not address or len(address) <= 6:
        return ADDRESS_MASK
    return address[:-6] + ADDRESS_MASK


def mask_token(value: str | None) -> str:
    """Mask the trailing 4 characters of a generic token."""
    if not value or len(value) <= 4:
        return TOKEN_MASK
    return value[:-4] + TOKEN_MASK


def mask_ip(ip: str | None) -> str | None:
    """Mask an IP address.

    IPv4 keeps the first three octets, IPv6 and anything else keeps all but
    the trailing 4 characters.
    """
    if not ip or ip == "unknown":
        return ip

    if "." in ip and ":" not in ip:
        parts = ip.split(".")
        if len(parts) == 4:
            return f"{parts[0]}.{parts[1]}.{parts[2]}.{IPV4_MASK}"

    return mask_token(ip)


def redact_text(text: str) -> str:
    """Mask EVM, IPv4 and IPv6 addresses embedded in free text."""
    text = _EVM_ADDRESS_RE.sub(lambda m: mask_address(m.group(0)), text)
    text = _IPV6_RE.sub(lambda m: mask_token(m.group(0)), text)
    return _IPV4_RE.sub(
        lambda m: f"{m.group(1)}.{m.group(2)}.{m.group(3)}.{IPV4_MASK}", text
    )


# LogRecord attributes (set via ``extra=``) that are masked in place
MASKED_FIELDS: dict[str, Callable[[str], str | None]] = {
    "address": mask_address,
    "wallet": mask_address,
    "wallet_address": mask_address,
    "settle_address": mask_address,
    "deposit_address": mask_address,
    "refund_address": mask_address,
    "ip": mask_ip,
    "user_ip": mask_ip,
    "token": mask_token,
}

REDACTED_FIELDS = frozenset(
    {
        "authorization",
        "cookie",
        "password",
        "secret",
        "private_key",
        "mnemonic",
        "bot_token",
    }
)


def redact_mapping(data: dict[str, Any]) -> dict[str, Any]:
    """Return a copy of a mapping with sensitive keys masked."""
    result: dict[str, Any] = {}
    for key, value in data.items():
        if key in REDACTED_FIELDS:
            result[key] = REDACTED
        elif key in MASKED_FIELDS and isinstance(value, str):
            result[key] = MASKED_FIELDS[key](value)
        elif isinstance(value, dict):
            result[key] = redact_mapping(value)
        else:
            result[key] = value
    return result


class RedactingFilter(logging.Filter):
    """Logging filter that masks sensitive fields, messages and tracebacks.

    Exception info is rendered into ``exc_text`` and masked there, so
    formatters never see the raw exception.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        for name, masker in MASKED_FIELDS.items():
            value = getattr(record, name, None)
            if isinstance(value, str):
                setattr(record, name, masker(value))

        for name in REDACTED_FIELDS:
            if getattr(record, name, None) is not None:
                setattr(record, name, REDACTED)

        if record.exc_info:
            if not record.exc_text:
                record.exc_text = _TRACEBACK_FORMATTER.formatException(record.exc_info)
            record.exc_info = None
        if record.exc_text:
            record.exc_text = redact_text(record.exc_text)
        if record.stack_info:
            record.stack_info = redact_text(record.stack_info)

        if isinstance(record.args, dict):
            record.args = redact_mapping(record.args)
        try:
            message = record.getMessage()
        except (TypeError, ValueError, KeyError):
            return True
        record.msg = redact_text(message)
        record.args = None
        return True
