"""Lead model - prospective student submissions from the landing page form"""

import enum

from sqlalchemy import Column, Integer, String, DateTime, Text, JSON, Index
from sqlalchemy.sql import func

from admissions.database import Base


class Stream(str, enum.Enum):
    SCIENCE = "Science"
    COMMERCE = "Commerce"
    HUMANITIES = "Humanities"


class CallStatus(str, enum.Enum):
    PENDING = "pending"
    CALLED = "called"
    VOICEMAIL = "voicemail"
    INCORRECT_PHONE = "incorrect_phone"
    FAILED = "failed"


class WebhookStatus(str, enum.Enum):
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


class Lead(Base):
    """Lead model - one admission enquiry"""

    __tablename__ = "leads"

    id = Column(Integer, primary_key=True, index=True)

    # Form data (normalized before insert)
    name = Column(String(50), nullable=False)
    phone_number = Column(String(10), nullable=False, unique=True, index=True)  # 10 digits, no formatting
    email = Column(String(100), nullable=False, index=True)  # lower-cased
    stream = Column(String(20), nullable=False)  # Science | Commerce | Humanities

    # Follow-up call tracking
    call_status = Column(String(20), nullable=False, default=CallStatus.PENDING.value, index=True)
    call_details = Column(JSON, nullable=False, default=dict)

    # n8n delivery tracking
    webhook_status = Column(String(10), nullable=False, default=WebhookStatus.PENDING.value)
    webhook_attempts = Column(Integer, nullable=False, default=0)
    webhook_error = Column(Text, nullable=True)
    webhook_logs = Column(JSON, nullable=False, default=list)  # append-only

    # Metadata
    submitted_at = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False, index=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    # Indexes for filtering and sorting
    __table_args__ = (
        Index('idx_leads_call_status_created', 'call_status', 'created_at'),
    )

    def __repr__(self):
        return f"<Lead(id={self.id}, name='{self.name}', phone='{self.phone_number}', call_status='{self.call_status}')>"
