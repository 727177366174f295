"""
Domain models for templates, send records and the sync audit log.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TemplateCategory(str, Enum):
    OUTREACH = "outreach"
    FOLLOW_UP = "follow_up"
    MEETING = "meeting"
    PROPOSAL = "proposal"
    OTHER = "other"


class MessageStatus(str, Enum):
    SENT = "sent"
    DELIVERED = "delivered"
    FAILED = "failed"
    BOUNCED = "bounced"


class SyncStatus(str, Enum):
    SUCCESS = "success"
    ERROR = "error"


class MessageTemplate(BaseModel):
    """Reusable subject/body pair with ``{{placeholder}}`` tokens."""

    id: str
    name: str
    subject: str
    body_html: str
    body_text: Optional[str] = None
    category: TemplateCategory = TemplateCategory.OTHER
    placeholders: List[str] = Field(default_factory=list)
    is_active: bool = True
    owner_id: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)


class OutboundMessage(BaseModel):
    """Audit record of one message handed to the provider."""

    id: str
    linked_account_id: str
    provider_message_id: str
    provider_thread_id: Optional[str] = None
    person_id: Optional[str] = None
    template_id: Optional[str] = None
    recipients: List[str]
    subject: str
    body_text: str = ""
    body_html: Optional[str] = None
    status: MessageStatus = MessageStatus.SENT
    sent_at: datetime = Field(default_factory=_utcnow)
    delivered_at: Optional[datetime] = None
    failed_at: Optional[datetime] = None
    error_message: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)


class SyncLogEntry(BaseModel):
    """Append-only audit entry for provider operations."""

    id: str
    owner_id: Optional[str] = None
    operation_type: str
    status: SyncStatus
    message_count: int = 0
    error_message: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow)


__all__ = [
    "MessageStatus",
    "MessageTemplate",
    "OutboundMessage",
    "SyncLogEntry",
    "SyncStatus",
    "TemplateCategory",
]
