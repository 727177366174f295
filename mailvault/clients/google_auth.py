"""
Google OAuth utilities.

These helpers build the consent URL and talk to Google's token and identity
endpoints. They raise the vault's error taxonomy so callers never have to
inspect raw HTTP responses.
"""

from __future__ import annotations

import logging
from typing import Any, Dict
from urllib.parse import urlencode

import httpx

from mailvault.core.config import GoogleSettings, OAuthSettings
from mailvault.core.errors import (
    GrantRevokedError,
    RefreshError,
    TokenExchangeError,
    UserInfoError,
)
from mailvault.models.oauth import TokenGrant
from mailvault.utils.http import RetryConfig, request_with_retry

logger = logging.getLogger(__name__)

# OAuth error codes meaning the refresh token itself will never work again.
REVOKED_GRANT_ERRORS = frozenset({"invalid_grant", "unauthorized_client"})


def provider_error_code(response: httpx.Response) -> str | None:
    """Return the OAuth ``error`` code of a token endpoint response, if any."""
    try:
        payload = response.json()
    except ValueError:
        return None
    if isinstance(payload, dict) and isinstance(payload.get("error"), str):
        return payload["error"]
    return None


def provider_error_reason(response: httpx.Response) -> str:
    """Extract Google's ``error``/``error_description`` from a failed response."""
    try:
        payload = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"
    if isinstance(payload, dict):
        error = payload.get("error")
        if isinstance(error, dict):
            return str(error.get("message") or error.get("status") or error)
        description = payload.get("error_description")
        if error and description:
            return f"{error}: {description}"
        if error:
            return str(error)
    return response.text or f"HTTP {response.status_code}"


class GoogleOAuthClient:
    """Build Google authorization URLs and exchange or refresh tokens."""

    AUTH_BASE_URL = "https://accounts.google.com/o/oauth2/v2/auth"
    TOKEN_URL = "https://oauth2.googleapis.com/token"
    USERINFO_URL = "https://www.googleapis.com/oauth2/v2/userinfo"

    def __init__(
        self,
        google_settings: GoogleSettings,
        oauth_settings: OAuthSettings,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float = 10.0,
    ) -> None:
        self._google = google_settings
        self._oauth = oauth_settings
        self._transport = transport
        self._timeout = timeout

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self._timeout, transport=self._transport)

    def build_authorization_url(self, state: str, access_type: str = "offline") -> str:
        """Construct the Google OAuth consent URL."""
        params = {
            "client_id": self._google.client_id,
            "redirect_uri": str(self._google.redirect_uri),
            "response_type": "code",
            "scope": " ".join(self._oauth.scopes),
            "access_type": access_type,
            "include_granted_scopes": "true",
            "prompt": "consent",
            "state": state,
        }
        return f"{self.AUTH_BASE_URL}?{urlencode(params)}"

    async def exchange_authorization_code(self, code: str) -> TokenGrant:
        """Exchange an authorization code for an access/refresh token pair."""
        payload = {
            "code": code,
            "client_id": self._google.client_id,
            "client_secret": self._google.client_secret,
            "redirect_uri": str(self._google.redirect_uri),
            "grant_type": "authorization_code",
        }

        try:
            async with self._client() as client:
                response = await client.post(self.TOKEN_URL, data=payload)
        except httpx.HTTPError as exc:
            raise TokenExchangeError(
                f"Network error during token exchange: {exc}"
            ) from exc

        if response.status_code != httpx.codes.OK:
            reason = provider_error_reason(response)
            logger.warning("Google token exchange rejected: %s", reason)
            raise TokenExchangeError(f"Token exchange failed: {reason}")

        token_payload = response.json()
        access_token = token_payload.get("access_token")
        refresh_token = token_payload.get("refresh_token")
        expires_in = token_payload.get("expires_in")

        if not access_token or not refresh_token or not expires_in:
            raise TokenExchangeError("Incomplete token payload returned from Google.")

        return TokenGrant(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_in=int(expires_in),
            scope=token_payload.get("scope", ""),
            token_type=token_payload.get("token_type", "Bearer"),
        )

    async def refresh_token(self, refresh_token: str) -> TokenGrant:
        """Refresh the access token using a stored refresh token.

        ``refresh_token`` on the returned grant is only set when Google rotated it.
        A 400/401 carrying ``invalid_grant`` or ``unauthorized_client`` raises
        :class:`GrantRevokedError`; network failures, 5xx responses and other
        rejections raise a plain :class:`RefreshError` and may be retried.
        """
        payload = {
            "client_id": self._google.client_id,
            "client_secret": self._google.client_secret,
            "refresh_token": refresh_token,
            "grant_type": "refresh_token",
        }

        try:
            async with self._client() as client:
                response = await client.post(self.TOKEN_URL, data=payload)
        except httpx.HTTPError as exc:
            raise RefreshError(f"Network error during token refresh: {exc}") from exc

        if response.status_code != httpx.codes.OK:
            reason = provider_error_reason(response)
            details = {"provider_status": response.status_code}
            if (
                response.status_code in (400, 401)
                and provider_error_code(response) in REVOKED_GRANT_ERRORS
            ):
                raise GrantRevokedError(f"Token refresh rejected: {reason}", details=details)
            raise RefreshError(f"Token refresh failed: {reason}", details=details)

        token_payload = response.json()
        access_token = token_payload.get("access_token")
        expires_in = token_payload.get("expires_in")

        if not access_token or not expires_in:
            raise RefreshError("Incomplete refresh payload returned from Google.")

        return TokenGrant(
            access_token=access_token,
            refresh_token=token_payload.get("refresh_token"),
            expires_in=int(expires_in),
            scope=token_payload.get("scope", ""),
        )

    async def fetch_user_info(self, access_token: str) -> Dict[str, Any]:
        """Return the authenticated identity; always includes ``email``."""
        try:
            async with self._client() as client:
                response = await request_with_retry(
                    client.get,
                    self.USERINFO_URL,
                    headers={"Authorization": f"Bearer {access_token}"},
                    retry_config=RetryConfig(attempts=2, backoff_seconds=0.5),
                )
        except httpx.HTTPStatusError as exc:
            raise UserInfoError(
                f"Failed to get user info: {provider_error_reason(exc.response)}"
            ) from exc
        except httpx.HTTPError as exc:
            raise UserInfoError(f"Network error fetching user info: {exc}") from exc

        user_info = response.json()
        if not user_info.get("email"):
            raise UserInfoError("Google identity response did not include an email.")
        return user_info


__all__ = [
    "GoogleOAuthClient",
    "REVOKED_GRANT_ERRORS",
    "provider_error_code",
    "provider_error_reason",
]
