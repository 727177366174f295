"""
Domain models for OAuth credential custody.
"""

from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class LinkedAccount(BaseModel):
    """A provider mailbox connected by a CRM user.

    Only the encrypted token pair is ever held on this model; plaintext
    tokens are produced exclusively by the token lifecycle service.
    """

    id: str
    owner_id: str = Field(..., description="CRM user that connected the mailbox.")
    account_email: str
    provider: str = Field("google", description="OAuth provider name.")
    access_token_encrypted: str
    refresh_token_encrypted: str
    token_expires_at: datetime
    scope: str = ""
    is_active: bool = True
    last_sync_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    def is_expired(self, now: datetime, skew_seconds: int = 0) -> bool:
        expires_at = self.token_expires_at
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        return now.timestamp() + skew_seconds >= expires_at.timestamp()


class OAuthHandshakeState(BaseModel):
    """Ephemeral record of an in-flight handshake; never persisted."""

    token: str
    issued_at: datetime
    owner_id: Optional[str] = None
    redirect_to: Optional[str] = None


class TokenGrant(BaseModel):
    """Normalized token endpoint response."""

    access_token: str
    expires_in: int
    refresh_token: Optional[str] = None
    scope: str = ""
    token_type: str = "Bearer"


__all__ = ["LinkedAccount", "OAuthHandshakeState", "TokenGrant"]
