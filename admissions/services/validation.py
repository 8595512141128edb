"""Lead submission validation.

Single source of truth for the form rules. The HTTP layer calls it before
creating anything and ``LeadStore.create`` calls it again before inserting,
so both boundaries enforce the same invariants.
"""

import re
from dataclasses import dataclass, field
from typing import Any, List, Mapping, Optional

from admissions.models.lead import Stream
from admissions.services.phone import InvalidPhoneError, validate_indian_mobile

NAME_MIN_LENGTH = 2
NAME_MAX_LENGTH = 50
EMAIL_MAX_LENGTH = 100

_NAME_PATTERN = re.compile(r"^[a-zA-Z\s]+$")
_EMAIL_PATTERN = re.compile(
    r"^[a-zA-Z0-9.!#$%&'*+/=?^_`{|}~-]+@[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?"
    r"(?:\.[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?)*\.[a-zA-Z]{2,}$"
)
STREAMS = tuple(s.value for s in Stream)


@dataclass(frozen=True)
class FieldError:
    field: str
    message: str

    def as_dict(self) -> dict:
        return {"field": self.field, "message": self.message}


@dataclass(frozen=True)
class LeadInput:
    """Normalized, record-ready submission."""

    name: str
    phone_number: str
    email: str
    stream: str


@dataclass
class ValidationResult:
    value: Optional[LeadInput] = None
    errors: List[FieldError] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.value is not None and not self.errors


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    return value.strip() if isinstance(value, str) else str(value).strip()


def _check_name(raw: Any) -> tuple[Optional[str], Optional[str]]:
    name = _as_text(raw)
    if not name:
        return None, "Name is required"
    if not NAME_MIN_LENGTH <= len(name) <= NAME_MAX_LENGTH:
        return None, f"Name must be between {NAME_MIN_LENGTH} and {NAME_MAX_LENGTH} characters"
    if not _NAME_PATTERN.match(name):
        return None, "Name can only contain letters and spaces"
    return name, None


def _check_phone(raw: Any) -> tuple[Optional[str], Optional[str]]:
    if not _as_text(raw):
        return None, "Phone number is required"
    try:
        return validate_indian_mobile(raw), None
    except InvalidPhoneError as e:
        return None, e.message


def _check_email(raw: Any) -> tuple[Optional[str], Optional[str]]:
    email = _as_text(raw).lower()
    if not email:
        return None, "Email is required"
    if not _EMAIL_PATTERN.match(email):
        return None, "Please enter a valid email address"
    if len(email) > EMAIL_MAX_LENGTH:
        return None, f"Email cannot exceed {EMAIL_MAX_LENGTH} characters"
    return email, None


def _check_stream(raw: Any) -> tuple[Optional[str], Optional[str]]:
    stream = _as_text(raw)
    if not stream:
        return None, "Stream is required"
    if stream not in STREAMS:
        return None, "Stream must be Science, Commerce, or Humanities"
    return stream, None


def validate_submission(data: Mapping[str, Any]) -> ValidationResult:
    """
    Validate a raw submission (wire field names).

    Every field is checked so the caller gets all offending fields at once.
    Returns a result with either ``value`` or ``errors`` set, never both.
    """
    checks = (
        ("name", _check_name),
        ("phoneNumber", _check_phone),
        ("email", _check_email),
        ("stream", _check_stream),
    )
    cleaned: dict[str, str] = {}
    errors: List[FieldError] = []
    for field_name, check in checks:
        value, message = check(data.get(field_name))
        if message is not None:
            errors.append(FieldError(field_name, message))
        else:
            cleaned[field_name] = value

    if errors:
        return ValidationResult(errors=errors)

    return ValidationResult(
        value=LeadInput(
            name=cleaned["name"],
            phone_number=cleaned["phoneNumber"],
            email=cleaned["email"],
            stream=cleaned["stream"],
        )
    )


def validate_lead_input(lead_input: LeadInput) -> ValidationResult:
    """Re-run the rules on an already normalized value (persistence boundary)."""
    return validate_submission({
        "name": lead_input.name,
        "phoneNumber": lead_input.phone_number,
        "email": lead_input.email,
        "stream": lead_input.stream,
    })
