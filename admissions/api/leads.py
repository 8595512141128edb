"""Leads API endpoints - landing form submissions and lead administration"""

import logging
import math
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from admissions.database import Database, get_database, get_db
from admissions.models.lead import CallStatus, Stream
from admissions.rate_limit import lead_submission_limit, limiter
from admissions.schemas.lead import (
    LeadListData,
    LeadResponse,
    LeadStatusUpdate,
    Pagination,
    PhoneCheckRequest,
)
from admissions.services.background import BackgroundDispatcher, get_dispatcher
from admissions.services.lead_store import LeadFilters, LeadStore
from admissions.services.lead_submission import SUBMISSION_THANK_YOU, submit_lead
from admissions.services.webhook_notifier import WebhookNotifier, get_webhook_notifier

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/leads", tags=["leads"])


def _lead_json(lead) -> Dict[str, Any]:
    return LeadResponse.model_validate(lead).model_dump(mode="json", by_alias=True)


@router.post("", status_code=status.HTTP_201_CREATED)
@limiter.limit(lead_submission_limit, override_defaults=False)
async def create_lead(
    request: Request,
    payload: Dict[str, Any] = Body(...),
    db: AsyncSession = Depends(get_db),
    database: Database = Depends(get_database),
    notifier: WebhookNotifier = Depends(get_webhook_notifier),
    dispatcher: BackgroundDispatcher = Depends(get_dispatcher),
):
    """
    Create a new lead from the landing form.

    Public endpoint. Responds as soon as the lead is stored; the n8n webhook
    runs in the background.
    """
    logger.info("Received lead submission: stream=%s", payload.get("stream"))
    ack = await submit_lead(
        payload,
        session=db,
        database=database,
        notifier=notifier,
        dispatcher=dispatcher,
    )
    return {
        "success": True,
        "message": SUBMISSION_THANK_YOU,
        "data": ack.as_dict(),
    }


@router.get("")
async def list_leads(
    page: int = Query(1, ge=1, description="Page number"),
    limit: int = Query(10, ge=1, le=100, description="Items per page"),
    stream: Optional[Stream] = Query(None, description="Filter by stream"),
    call_status: Optional[CallStatus] = Query(None, alias="callStatus", description="Filter by call status"),
    search: Optional[str] = Query(None, description="Search by name/email/phone"),
    db: AsyncSession = Depends(get_db),
):
    """Get leads with pagination, newest first."""
    filters = LeadFilters(
        stream=stream.value if stream else None,
        call_status=call_status.value if call_status else None,
        search=search.strip() if search and search.strip() else None,
    )
    leads, total = await LeadStore(db).list(filters, page=page, limit=limit)

    data = LeadListData(
        leads=[LeadResponse.model_validate(lead) for lead in leads],
        pagination=Pagination(
            current=page,
            pages=math.ceil(total / limit) if total else 0,
            total=total,
            limit=limit,
        ),
    )
    return {"success": True, "data": data.model_dump(mode="json", by_alias=True)}


@router.get("/stats")
async def get_lead_stats(db: AsyncSession = Depends(get_db)):
    """Get lead statistics: overview by call status plus per-stream counts."""
    stats = await LeadStore(db).stats()
    return {"success": True, "data": stats}


@router.post("/check-phone")
async def check_phone_exists(
    request: Request,
    db: AsyncSession = Depends(get_db),
):
    """
    Check if a phone number is already registered.

    Body: {"phoneNumber": "..."}. UX hint only; never fails the caller, so a
    missing, malformed or non-object body answers exists=false.
    """
    try:
        body = await request.json()
    except ValueError:
        body = None
    payload = PhoneCheckRequest.model_validate(body) if isinstance(body, dict) else PhoneCheckRequest()

    try:
        exists = await LeadStore(db).phone_exists(str(payload.phone_number or ""))
    except Exception as e:
        logger.error("Phone existence check failed: %s", e, exc_info=True)
        exists = False

    return {
        "success": True,
        "data": {
            "exists": exists,
            "message": "This phone number is already registered" if exists else "Phone number is available",
        },
    }


@router.get("/{lead_id}")
async def get_lead(lead_id: int, db: AsyncSession = Depends(get_db)):
    """Get a single lead by ID."""
    lead = await LeadStore(db).get(lead_id)
    return {"success": True, "data": _lead_json(lead)}


@router.patch("/{lead_id}/status")
async def update_lead_status(
    lead_id: int,
    update: LeadStatusUpdate,
    db: AsyncSession = Depends(get_db),
):
    """Update the follow-up call status of a lead."""
    lead = await LeadStore(db).update_status(
        lead_id,
        call_status=update.call_status.value if update.call_status else None,
        call_details=update.call_details,
    )
    return {
        "success": True,
        "message": "Lead status updated successfully",
        "data": _lead_json(lead),
    }


@router.delete("/{lead_id}")
async def delete_lead(lead_id: int, db: AsyncSession = Depends(get_db)):
    """Delete a lead."""
    await LeadStore(db).delete(lead_id)
    return {"success": True, "message": "Lead deleted successfully"}
