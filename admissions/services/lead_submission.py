"""Lead submission flow: validate, persist, acknowledge, notify in background."""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Mapping

from sqlalchemy.ext.asyncio import AsyncSession

from admissions.database import Database
from admissions.errors import ValidationFailedError
from admissions.services.background import BackgroundDispatcher
from admissions.services.lead_store import LeadStore
from admissions.services.validation import validate_submission
from admissions.services.webhook_notifier import LeadSnapshot, WebhookNotifier, deliver_lead_webhook

logger = logging.getLogger(__name__)

SUBMISSION_THANK_YOU = "Thank you! We will call you shortly to discuss your admission."


@dataclass(frozen=True)
class SubmissionAck:
    id: int
    name: str
    email: str
    stream: str
    submitted_at: datetime

    def as_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "stream": self.stream,
            "submittedAt": self.submitted_at,
        }


async def submit_lead(
    raw: Mapping[str, Any],
    *,
    session: AsyncSession,
    database: Database,
    notifier: WebhookNotifier,
    dispatcher: BackgroundDispatcher,
) -> SubmissionAck:
    """
    Create a lead from a raw form submission.

    The acknowledgment means the row is committed. The webhook delivery is
    spawned on *dispatcher* and not awaited, so its latency and retries never
    reach the caller.

    Raises:
        ValidationFailedError: one or more fields are invalid (nothing stored)
        DuplicateLeadError: the phone number is already registered
    """
    check = validate_submission(raw)
    if not check.ok:
        errors = [e.as_dict() for e in check.errors]
        logger.info("Validation errors: %s", errors)
        raise ValidationFailedError(errors=errors)

    lead = await LeadStore(session).create(check.value)
    snapshot = LeadSnapshot.from_lead(lead)

    dispatcher.spawn(
        deliver_lead_webhook(database, notifier, snapshot),
        name=f"lead-webhook-{lead.id}",
    )

    return SubmissionAck(
        id=lead.id,
        name=lead.name,
        email=lead.email,
        stream=lead.stream,
        submitted_at=lead.submitted_at,
    )
