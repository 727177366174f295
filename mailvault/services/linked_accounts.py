"""
Helpers for retrieving, refreshing and retiring linked provider accounts.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
import weakref
from datetime import datetime, timedelta, timezone
from typing import List

from mailvault.clients.google_auth import GoogleOAuthClient
from mailvault.clients.sqlite_store import SQLiteStore
from mailvault.core.errors import (
    GrantRevokedError,
    NoAccountError,
    RefreshError,
    UnauthorizedError,
)
from mailvault.models.oauth import LinkedAccount, TokenGrant
from mailvault.services.token_cipher import TokenCipherService

logger = logging.getLogger(__name__)


class TokenLifecycleService:
    """Custodian of linked-account credentials.

    This is the only component that decrypts stored tokens. Refreshes are
    serialized per account: concurrent callers that observe the same expired
    token queue on one lock, the first performs the refresh and the rest
    re-read the account and reuse the new token.
    """

    def __init__(
        self,
        store: SQLiteStore,
        oauth_client: GoogleOAuthClient,
        token_cipher: TokenCipherService,
        *,
        refresh_skew_seconds: int = 0,
    ) -> None:
        self._store = store
        self._oauth = oauth_client
        self._cipher = token_cipher
        self._refresh_skew = refresh_skew_seconds
        # Entries disappear once no caller holds or waits on the lock.
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    def _lock_for(self, account_id: str) -> asyncio.Lock:
        lock = self._locks.get(account_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[account_id] = lock
        return lock

    async def save_grant(
        self,
        *,
        owner_id: str,
        provider: str,
        account_email: str,
        grant: TokenGrant,
    ) -> LinkedAccount:
        """Encrypt a fresh grant and upsert it as the active account in one write."""
        if not grant.refresh_token:
            raise ValueError("A new linked account requires a refresh token.")
        now = datetime.now(timezone.utc)
        account = LinkedAccount(
            id=str(uuid.uuid4()),
            owner_id=owner_id,
            account_email=account_email.lower(),
            provider=provider,
            access_token_encrypted=self._cipher.encrypt(grant.access_token),
            refresh_token_encrypted=self._cipher.encrypt(grant.refresh_token),
            token_expires_at=now + timedelta(seconds=grant.expires_in),
            scope=grant.scope,
            is_active=True,
            created_at=now,
            updated_at=now,
        )
        stored = await self._store.upsert_linked_account(account)
        logger.info(
            "Linked account stored",
            extra={"owner_id": owner_id, "provider": provider, "account_id": stored.id},
        )
        return stored

    async def get_active_account(self, owner_id: str, provider: str) -> LinkedAccount:
        if not owner_id:
            raise UnauthorizedError()
        account = await self._store.get_active_account(owner_id=owner_id, provider=provider)
        if account is None:
            raise NoAccountError(
                f"No {provider} account connected. Please authenticate first."
            )
        return account

    async def get_valid_access_token(self, owner_id: str, provider: str) -> str:
        """Return a plaintext access token, refreshing it first when expired."""
        account = await self.get_active_account(owner_id, provider)
        if not self._needs_refresh(account):
            return self._cipher.decrypt(account.access_token_encrypted)

        async with self._lock_for(account.id):
            # Another caller may have refreshed (or deactivated) while we waited.
            current = await self._store.get_account(account.id)
            if current is None or not current.is_active:
                raise NoAccountError(
                    f"No {provider} account connected. Please authenticate first."
                )
            if self._needs_refresh(current):
                current = await self._refresh_locked(current)
            return self._cipher.decrypt(current.access_token_encrypted)

    async def refresh(self, account: LinkedAccount) -> LinkedAccount:
        """Force a refresh of ``account`` under its lock."""
        async with self._lock_for(account.id):
            return await self._refresh_locked(account)

    async def _refresh_locked(self, account: LinkedAccount) -> LinkedAccount:
        refresh_token = self._cipher.decrypt(account.refresh_token_encrypted)
        refreshed_at = datetime.now(timezone.utc)
        try:
            grant = await self._oauth.refresh_token(refresh_token)
        except GrantRevokedError:
            logger.warning(
                "Token refresh rejected; deactivating linked account",
                extra={"account_id": account.id, "provider": account.provider},
            )
            await self._store.deactivate_account(
                account_id=account.id, updated_at=refreshed_at
            )
            raise
        except RefreshError:
            logger.warning(
                "Token refresh failed; account left active for a later retry",
                extra={"account_id": account.id, "provider": account.provider},
            )
            raise

        refresh_token_encrypted = account.refresh_token_encrypted
        if grant.refresh_token and grant.refresh_token != refresh_token:
            refresh_token_encrypted = self._cipher.encrypt(grant.refresh_token)

        updated = account.model_copy(
            update={
                "access_token_encrypted": self._cipher.encrypt(grant.access_token),
                "refresh_token_encrypted": refresh_token_encrypted,
                "token_expires_at": refreshed_at + timedelta(seconds=grant.expires_in),
                "updated_at": refreshed_at,
            }
        )
        await self._store.update_account_tokens(
            account_id=updated.id,
            access_token_encrypted=updated.access_token_encrypted,
            refresh_token_encrypted=updated.refresh_token_encrypted,
            token_expires_at=updated.token_expires_at,
            updated_at=refreshed_at,
        )
        logger.info("Access token refreshed", extra={"account_id": account.id})
        return updated

    async def disconnect(self, owner_id: str, provider: str) -> int:
        """Soft-delete every active account for (owner, provider)."""
        if not owner_id:
            raise UnauthorizedError()
        count = await self._store.deactivate_accounts(
            owner_id=owner_id,
            provider=provider,
            updated_at=datetime.now(timezone.utc),
        )
        logger.info(
            "Linked accounts disconnected",
            extra={"owner_id": owner_id, "provider": provider, "count": count},
        )
        return count

    async def is_connected(self, owner_id: str, provider: str) -> bool:
        if not owner_id:
            return False
        account = await self._store.get_active_account(owner_id=owner_id, provider=provider)
        return account is not None

    async def list_accounts(self, owner_id: str) -> List[LinkedAccount]:
        if not owner_id:
            raise UnauthorizedError()
        return await self._store.list_accounts(owner_id=owner_id)

    def _needs_refresh(self, account: LinkedAccount) -> bool:
        return account.is_expired(datetime.now(timezone.utc), self._refresh_skew)


__all__ = ["TokenLifecycleService"]
