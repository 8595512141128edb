"""Lead schemas - wire shapes of the leads API (camelCase on the wire)"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, computed_field
from pydantic.alias_generators import to_camel

from admissions.models.lead import CallStatus, Stream, WebhookStatus
from admissions.services.phone import format_phone_for_display


class CamelModel(BaseModel):
    class Config:
        alias_generator = to_camel
        populate_by_name = True


class LeadResponse(CamelModel):
    """Full lead as stored"""

    id: int
    name: str
    phone_number: str
    email: str
    stream: Stream
    call_status: CallStatus
    call_details: Dict[str, Any] = Field(default_factory=dict)
    webhook_status: WebhookStatus
    webhook_attempts: int = 0
    webhook_error: Optional[str] = None
    webhook_logs: List[Dict[str, Any]] = Field(default_factory=list)
    submitted_at: datetime
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True
        alias_generator = to_camel
        populate_by_name = True

    @computed_field(alias="formattedPhone")
    @property
    def formatted_phone(self) -> str:
        return format_phone_for_display(self.phone_number)


class LeadStatusUpdate(CamelModel):
    """PATCH /leads/{id}/status body"""

    call_status: Optional[CallStatus] = Field(None, description="Outcome of the follow-up call")
    call_details: Optional[Dict[str, Any]] = Field(None, description="Free-form call notes")


class PhoneCheckRequest(CamelModel):
    phone_number: Optional[Any] = Field(None, description="Phone number in any common format")


class Pagination(BaseModel):
    current: int
    pages: int
    total: int
    limit: int


class LeadListData(BaseModel):
    leads: List[LeadResponse]
    pagination: Pagination
