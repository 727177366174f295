"""Public schema exports."""

from .auth import (
    AuthorizationUrlResponse,
    ConnectionStatus,
    LinkedAccountSummary,
    OAuthCallbackPayload,
    OAuthCallbackResult,
)
from .mail import (
    DeliveryStatusUpdate,
    DispatchResult,
    SendEmailRequest,
    TemplateCreateRequest,
)

__all__ = [
    "AuthorizationUrlResponse",
    "ConnectionStatus",
    "DeliveryStatusUpdate",
    "DispatchResult",
    "LinkedAccountSummary",
    "OAuthCallbackPayload",
    "OAuthCallbackResult",
    "SendEmailRequest",
    "TemplateCreateRequest",
]
