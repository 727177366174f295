"""
Orchestrates the OAuth authorization-code handshake that links a mailbox.
"""

from __future__ import annotations

import logging
from typing import Optional, Tuple

from mailvault.clients.google_auth import GoogleOAuthClient
from mailvault.core.errors import InvalidStateError, UnauthorizedError
from mailvault.models.oauth import LinkedAccount, OAuthHandshakeState
from mailvault.services.linked_accounts import TokenLifecycleService
from mailvault.services.oauth_state import OAuthStateManager

logger = logging.getLogger(__name__)


class OAuthHandshakeService:
    """Connect-account flow: consent URL out, callback in, credential stored."""

    def __init__(
        self,
        oauth_client: GoogleOAuthClient,
        state_manager: OAuthStateManager,
        token_service: TokenLifecycleService,
        *,
        provider: str = "google",
    ) -> None:
        self._oauth = oauth_client
        self._states = state_manager
        self._tokens = token_service
        self._provider = provider

    def build_authorization_url(
        self, owner_id: str, *, redirect_to: Optional[str] = None
    ) -> Tuple[str, str]:
        """Return ``(authorization_url, state)`` for ``owner_id``."""
        if not owner_id:
            raise UnauthorizedError()
        state = self._states.generate_state(owner_id=owner_id, redirect_to=redirect_to)
        authorization_url = self._oauth.build_authorization_url(state=state)
        logger.info("Generated OAuth authorization URL", extra={"owner_id": owner_id})
        return authorization_url, state

    async def handle_callback(
        self, code: str, state: str
    ) -> Tuple[LinkedAccount, OAuthHandshakeState]:
        """Validate ``state``, exchange ``code`` and persist the linked account.

        Nothing is written unless the state, the token exchange and the
        identity lookup all succeed; the account is then stored in one upsert.
        """
        handshake = self._states.consume_state(state)
        if not handshake.owner_id:
            raise InvalidStateError("State parameter is not bound to a user.")

        grant = await self._oauth.exchange_authorization_code(code)
        user_info = await self._oauth.fetch_user_info(grant.access_token)

        account = await self._tokens.save_grant(
            owner_id=handshake.owner_id,
            provider=self._provider,
            account_email=user_info["email"],
            grant=grant,
        )
        return account, handshake


__all__ = ["OAuthHandshakeService"]
