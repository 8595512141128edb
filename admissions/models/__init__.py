"""SQLAlchemy ORM models"""

from admissions.models.lead import Lead, Stream, CallStatus, WebhookStatus

__all__ = [
    "Lead",
    "Stream",
    "CallStatus",
    "WebhookStatus",
]
