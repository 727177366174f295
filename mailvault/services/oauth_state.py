"""
One-time CSRF state tokens for the OAuth authorization-code handshake.
"""

from __future__ import annotations

import base64
import hmac
import logging
import secrets
import threading
import time
from datetime import datetime, timezone
from hashlib import sha256
from typing import Callable, Dict, Optional

from mailvault.core.errors import InvalidStateError
from mailvault.models.oauth import OAuthHandshakeState

logger = logging.getLogger(__name__)


class OAuthStateManager:
    """Issue and redeem single-use, signed OAuth state tokens.

    A token is ``<nonce>.<issued_at_ms>.<signature>``. The signature is an
    HMAC-SHA256 over nonce and timestamp so tampering is detected without a
    lookup, and the nonce is registered in a process-local pending table so
    a token is only honoured once and only by the process that issued it.
    """

    def __init__(
        self,
        *,
        secret_key: str,
        ttl_seconds: int = 600,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if not secret_key:
            raise ValueError("State signing secret must be provided.")
        self._secret_key = secret_key.encode("utf-8")
        self._ttl_ms = ttl_seconds * 1000
        self._clock = clock
        self._pending: Dict[str, OAuthHandshakeState] = {}
        self._lock = threading.Lock()

    @property
    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)

    def generate_state(
        self, *, owner_id: Optional[str] = None, redirect_to: Optional[str] = None
    ) -> str:
        """Create a state token and remember it for later validation."""
        nonce = secrets.token_urlsafe(32)
        issued_ms = self._now_ms()
        token = f"{nonce}.{issued_ms}.{self._sign(nonce, issued_ms)}"
        handshake = OAuthHandshakeState(
            token=token,
            issued_at=datetime.fromtimestamp(issued_ms / 1000, tz=timezone.utc),
            owner_id=owner_id,
            redirect_to=redirect_to,
        )
        with self._lock:
            self._prune_locked(issued_ms)
            self._pending[nonce] = handshake
        return token

    def consume_state(self, token: str) -> OAuthHandshakeState:
        """Validate and invalidate ``token``, returning the handshake it belongs to."""
        parts = token.split(".") if token else []
        if len(parts) != 3:
            raise InvalidStateError("Malformed state parameter.")
        nonce, issued_raw, signature = parts
        try:
            issued_ms = int(issued_raw)
        except ValueError as exc:
            raise InvalidStateError("Malformed state parameter.") from exc

        if not hmac.compare_digest(signature, self._sign(nonce, issued_ms)):
            logger.warning("Rejected OAuth state with invalid signature")
            raise InvalidStateError("Invalid state signature.")

        now_ms = self._now_ms()
        with self._lock:
            handshake = self._pending.pop(nonce, None)
            self._prune_locked(now_ms)

        if handshake is None or handshake.token != token:
            raise InvalidStateError("Unknown or already used state parameter.")

        age_ms = now_ms - issued_ms
        if age_ms < 0 or age_ms > self._ttl_ms:
            logger.warning("Rejected expired OAuth state", extra={"age_ms": age_ms})
            raise InvalidStateError("OAuth state token has expired.")
        return handshake

    def validate_state(self, token: str) -> bool:
        """Boolean form of :meth:`consume_state`; the token is spent either way."""
        try:
            self.consume_state(token)
        except InvalidStateError:
            return False
        return True

    def _sign(self, nonce: str, issued_ms: int) -> str:
        message = f"{nonce}.{issued_ms}".encode("utf-8")
        digest = hmac.new(self._secret_key, message, sha256).digest()
        return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")

    def _prune_locked(self, now_ms: int) -> None:
        cutoff = now_ms - self._ttl_ms
        expired = [
            nonce
            for nonce, handshake in self._pending.items()
            if handshake.issued_at.timestamp() * 1000 < cutoff
        ]
        for nonce in expired:
            del self._pending[nonce]

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)


__all__ = ["OAuthStateManager"]
