"""Gmail API client wrapper for sending composed messages."""

from __future__ import annotations

import logging
from typing import Any, Dict

import httpx

from mailvault.clients.google_auth import provider_error_reason
from mailvault.core.errors import SendError

logger = logging.getLogger(__name__)


class GmailClient:
    """Submit raw RFC 2822 messages through ``users.messages.send``."""

    SEND_URL = "https://gmail.googleapis.com/gmail/v1/users/me/messages/send"

    def __init__(
        self,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float = 30.0,
    ) -> None:
        self._transport = transport
        self._timeout = timeout

    async def send_raw_message(self, *, access_token: str, raw: str) -> Dict[str, Any]:
        """Send a base64url encoded message; return ``{"id", "threadId"}``.

        Sends are never retried here: a timed-out request may still have been
        delivered, and a blind retry would send a duplicate.
        """
        try:
            async with httpx.AsyncClient(
                timeout=self._timeout, transport=self._transport
            ) as client:
                response = await client.post(
                    self.SEND_URL,
                    headers={"Authorization": f"Bearer {access_token}"},
                    json={"raw": raw},
                )
        except httpx.HTTPError as exc:
            raise SendError(f"Network error while sending email: {exc}") from exc

        if response.status_code != httpx.codes.OK:
            reason = provider_error_reason(response)
            logger.warning(
                "Gmail rejected message",
                extra={"provider_status": response.status_code},
            )
            status_code = (
                response.status_code
                if response.status_code in (400, 403, 429)
                else None
            )
            raise SendError(
                f"Failed to send email: {reason}",
                status_code=status_code,
                details={"provider_status": response.status_code},
            )

        result = response.json()
        if not result.get("id"):
            raise SendError("Gmail response did not include a message id.")
        return result


__all__ = ["GmailClient"]
