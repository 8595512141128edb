"""Indian mobile number normalization and validation.

Pure helpers, no I/O. Canonical form is exactly 10 digits starting with 6-9.
"""

import re
from typing import Any, Optional

_NON_DIGITS = re.compile(r"\D")
_MOBILE_PATTERN = re.compile(r"^[6-9]\d{9}$")


class InvalidPhoneError(ValueError):
    """Raised when a value is not a valid 10-digit Indian mobile number."""

    def __init__(self, message: str, cleaned: str = "") -> None:
        super().__init__(message)
        self.message = message
        self.cleaned = cleaned


def clean_phone_number(value: Any) -> str:
    """Remove every non-digit character. Empty/None input gives ``""``."""
    if value is None or value == "":
        return ""
    return _NON_DIGITS.sub("", str(value))


def standardize_phone_number(value: Any) -> Optional[str]:
    """Reduce a phone number to 10 digits.

    Handles a ``91`` country code (12 digits) and a trunk ``0`` (11 digits).
    Returns ``None`` when the digits fit none of those shapes.
    """
    digits = clean_phone_number(value)
    if len(digits) == 10:
        return digits
    if len(digits) == 12 and digits.startswith("91"):
        return digits[2:]
    if len(digits) == 11 and digits.startswith("0"):
        return digits[1:]
    return None


def validate_indian_mobile(value: Any) -> str:
    """Return the canonical 10-digit number or raise ``InvalidPhoneError``."""
    cleaned = clean_phone_number(value)
    digits = standardize_phone_number(cleaned) or cleaned

    if len(digits) != 10:
        raise InvalidPhoneError("Phone number must be exactly 10 digits", cleaned)
    if digits[0] not in "6789":
        raise InvalidPhoneError("Indian mobile numbers must start with 6, 7, 8, or 9", cleaned)
    if not _MOBILE_PATTERN.match(digits):
        raise InvalidPhoneError("Phone number must contain only digits", cleaned)
    return digits


def format_phone_for_display(value: Any) -> str:
    """``9876543210`` -> ``987-654-3210``; anything else is returned as given."""
    digits = clean_phone_number(value)
    if len(digits) != 10:
        return "" if value is None else str(value)
    return f"{digits[:3]}-{digits[3:6]}-{digits[6:]}"


def format_phone_with_country_code(value: Any) -> str:
    """``9876543210`` -> ``+919876543210``; anything else is returned as given."""
    digits = clean_phone_number(value)
    if len(digits) == 10:
        return f"+91{digits}"
    return "" if value is None else str(value)
