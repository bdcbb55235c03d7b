"""Phone number normalization for the pairing endpoints."""

from __future__ import annotations

import re
from typing import Any

from .constants import PHONE_COUNTRY_PREFIX, PHONE_EXAMPLE, PHONE_LENGTH
from .exceptions import InvalidPhoneFormat

_NON_DIGITS = re.compile(r"\D")


def digits_only(raw: Any) -> str:
    if raw is None:
        return ""
    return _NON_DIGITS.sub("", str(raw))


def normalize_phone(raw: Any) -> str:
    """Strip formatting and return the digit-only number, or raise InvalidPhoneFormat.

    "+94 71 234 5678" and "94712345678" both normalize to "94712345678".
    """
    cleaned = digits_only(raw)
    if not cleaned.startswith(PHONE_COUNTRY_PREFIX) or len(cleaned) != PHONE_LENGTH:
        raise InvalidPhoneFormat(f"Invalid phone number. Example: {PHONE_EXAMPLE}")
    return cleaned
