"""Lead persistence.

``LeadStore`` wraps one ``AsyncSession``. Every mutating call commits and
refreshes so server-side timestamps are loaded before the object is used.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import and_, func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from admissions.errors import DuplicateLeadError, LeadNotFoundError, LeadSchemaError
from admissions.models.lead import CallStatus, Lead, WebhookStatus
from admissions.services.phone import clean_phone_number, standardize_phone_number
from admissions.services.validation import LeadInput, validate_lead_input

logger = logging.getLogger(__name__)


@dataclass
class LeadFilters:
    stream: Optional[str] = None
    call_status: Optional[str] = None
    search: Optional[str] = None


def escape_like(text: str) -> str:
    """Escape LIKE wildcards so user search text matches literally."""
    return text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class LeadStore:
    """Owns all reads and writes of ``leads`` rows."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, lead_input: LeadInput, submitted_at: Optional[datetime] = None) -> Lead:
        """Insert a new lead with default status fields.

        Raises:
            LeadSchemaError: the value breaks a lead invariant
            DuplicateLeadError: the phone number is already stored
        """
        check = validate_lead_input(lead_input)
        if not check.ok:
            raise LeadSchemaError(errors=[e.as_dict() for e in check.errors])

        lead = Lead(
            name=check.value.name,
            phone_number=check.value.phone_number,
            email=check.value.email,
            stream=check.value.stream,
            submitted_at=submitted_at or datetime.now(timezone.utc),
            call_status=CallStatus.PENDING.value,
            call_details={},
            webhook_status=WebhookStatus.PENDING.value,
            webhook_attempts=0,
            webhook_logs=[],
        )
        self.session.add(lead)
        try:
            await self.session.commit()
        except IntegrityError as e:
            await self.session.rollback()
            logger.info("Duplicate lead rejected for phone=%s: %s", lead_input.phone_number, e.orig)
            raise DuplicateLeadError(field="phoneNumber") from e

        await self.session.refresh(lead)
        logger.info("New lead created: id=%s, stream=%s", lead.id, lead.stream)
        return lead

    async def get(self, lead_id: int) -> Lead:
        lead = await self.session.get(Lead, lead_id)
        if lead is None:
            raise LeadNotFoundError()
        return lead

    async def update_status(
        self,
        lead_id: int,
        call_status: Optional[str] = None,
        call_details: Optional[Dict[str, Any]] = None,
    ) -> Lead:
        """Partial update of the follow-up call fields."""
        lead = await self.get(lead_id)
        if call_status is not None:
            lead.call_status = call_status
        if call_details is not None:
            lead.call_details = dict(call_details)
        await self.session.commit()
        await self.session.refresh(lead)
        logger.info("Lead status updated: %s -> %s", lead.id, lead.call_status)
        return lead

    async def phone_exists(self, phone: str) -> bool:
        """Non-authoritative lookup; the unique index decides on insert."""
        normalized = standardize_phone_number(phone) or clean_phone_number(phone)
        if not normalized:
            return False
        result = await self.session.execute(
            select(Lead.id).where(Lead.phone_number == normalized).limit(1)
        )
        return result.scalar_one_or_none() is not None

    async def list(
        self,
        filters: Optional[LeadFilters] = None,
        page: int = 1,
        limit: int = 10,
    ) -> Tuple[List[Lead], int]:
        """Return one page of leads (newest first) and the filtered total."""
        filters = filters or LeadFilters()
        conditions = []
        if filters.stream:
            conditions.append(Lead.stream == filters.stream)
        if filters.call_status:
            conditions.append(Lead.call_status == filters.call_status)
        if filters.search:
            search_term = f"%{escape_like(filters.search)}%"
            conditions.append(
                or_(
                    Lead.name.ilike(search_term, escape="\\"),
                    Lead.email.ilike(search_term, escape="\\"),
                    Lead.phone_number.ilike(search_term, escape="\\"),
                )
            )

        count_query = select(func.count(Lead.id))
        query = select(Lead)
        if conditions:
            count_query = count_query.where(and_(*conditions))
            query = query.where(and_(*conditions))

        total = int((await self.session.execute(count_query)).scalar_one() or 0)

        query = (
            query.order_by(Lead.created_at.desc(), Lead.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        result = await self.session.execute(query)
        return list(result.scalars().all()), total

    async def stats(self) -> Dict[str, Any]:
        """Total, per-call-status and per-stream counts."""
        overview: Dict[str, int] = {"total": 0}
        overview.update({status.value: 0 for status in CallStatus})

        status_rows = await self.session.execute(
            select(Lead.call_status, func.count(Lead.id)).group_by(Lead.call_status)
        )
        for call_status, count in status_rows.all():
            overview[call_status] = int(count)
            overview["total"] += int(count)

        stream_rows = await self.session.execute(
            select(Lead.stream, func.count(Lead.id)).group_by(Lead.stream).order_by(Lead.stream)
        )
        by_stream = [{"stream": stream, "count": int(count)} for stream, count in stream_rows.all()]

        return {"overview": overview, "byStream": by_stream}

    async def delete(self, lead_id: int) -> None:
        lead = await self.get(lead_id)
        await self.session.delete(lead)
        await self.session.commit()
        logger.info("Lead deleted: %s", lead_id)

    async def record_webhook_outcome(
        self,
        lead_id: int,
        *,
        success: bool,
        attempts: int,
        error: Optional[str] = None,
        status: Optional[int] = None,
    ) -> Lead:
        """Store the result of one notifier run.

        Status flips to sent/failed, attempts and the log only ever grow.
        """
        lead = await self.get(lead_id)
        lead.webhook_status = (WebhookStatus.SENT if success else WebhookStatus.FAILED).value
        lead.webhook_attempts = (lead.webhook_attempts or 0) + attempts
        lead.webhook_error = None if success else error
        lead.webhook_logs = list(lead.webhook_logs or []) + [{
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "success": success,
            "error": error,
            "attempts": attempts,
            "status": status,
        }]
        await self.session.commit()
        await self.session.refresh(lead)
        return lead

