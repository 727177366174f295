"""
Pydantic models for composing, dispatching and tracking outbound email.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from mailvault.models.mail import MessageStatus, TemplateCategory


class SendEmailRequest(BaseModel):
    """Everything needed to compose and send one message.

    Recipient validation happens in the dispatcher so that an invalid request
    is rejected with a domain error before any provider call.
    """

    to: List[str] = Field(default_factory=list, description="Primary recipients.")
    cc: List[str] = Field(default_factory=list)
    bcc: List[str] = Field(default_factory=list)
    subject: str = Field("", description="Ignored when a template is supplied.")
    body: str = Field("", description="Plain-text body.")
    body_html: Optional[str] = Field(None, description="Optional HTML alternative.")
    template_id: Optional[str] = Field(
        None, description="Render subject and bodies from this template."
    )
    person_id: Optional[str] = Field(
        None, description="CRM person the message is addressed to."
    )
    person: Dict[str, Any] = Field(
        default_factory=dict,
        description="Values for template placeholders (name, email, company, ...).",
    )


class DispatchResult(BaseModel):
    message_id: str = Field(..., description="Provider-assigned message id.")
    thread_id: Optional[str] = None
    record_id: Optional[str] = Field(
        None, description="Identifier of the stored send record, when it was written."
    )
    status: MessageStatus = MessageStatus.SENT


class TemplateCreateRequest(BaseModel):
    name: str = Field(..., min_length=1)
    subject: str = Field(..., min_length=1)
    body_html: str
    body_text: Optional[str] = None
    category: TemplateCategory = TemplateCategory.OTHER
    placeholders: Optional[List[str]] = None


class DeliveryStatusUpdate(BaseModel):
    status: MessageStatus
    error_message: Optional[str] = None


__all__ = [
    "DeliveryStatusUpdate",
    "DispatchResult",
    "SendEmailRequest",
    "TemplateCreateRequest",
]
