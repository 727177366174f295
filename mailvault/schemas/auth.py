"""Schemas related to OAuth flows."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class OAuthCallbackPayload(BaseModel):
    """Payload sent to complete the OAuth callback exchange."""

    code: str = Field(..., min_length=1, description="Authorization code returned by Google OAuth.")
    state: str = Field(..., min_length=1, description="Opaque state token issued when starting OAuth.")


class AuthorizationUrlResponse(BaseModel):
    authorization_url: str
    state: str


class OAuthCallbackResult(BaseModel):
    status: str = "connected"
    account_id: str
    account_email: str
    redirect_to: Optional[str] = None


class LinkedAccountSummary(BaseModel):
    """Public view of a linked account; never carries token material."""

    id: str
    account_email: str
    provider: str
    scope: str
    is_active: bool
    token_expires_at: datetime
    last_sync_at: Optional[datetime] = None
    created_at: datetime


class ConnectionStatus(BaseModel):
    provider: str
    connected: bool
    accounts: list[LinkedAccountSummary] = Field(default_factory=list)


__all__ = [
    "AuthorizationUrlResponse",
    "ConnectionStatus",
    "LinkedAccountSummary",
    "OAuthCallbackPayload",
    "OAuthCallbackResult",
]
