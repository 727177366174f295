"""
Audit trail for outbound messages and provider operations.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from mailvault.clients.sqlite_store import SQLiteStore
from mailvault.core.errors import NotFoundError, StorageError
from mailvault.models.mail import (
    MessageStatus,
    OutboundMessage,
    SyncLogEntry,
    SyncStatus,
)

logger = logging.getLogger(__name__)


class DeliveryRecordService:
    """Persist send attempts, their outcomes and the sync log."""

    def __init__(self, store: SQLiteStore) -> None:
        self._store = store

    async def record_sent(
        self,
        *,
        linked_account_id: str,
        provider_message_id: str,
        provider_thread_id: Optional[str],
        recipients: List[str],
        subject: str,
        body_text: str,
        body_html: Optional[str],
        person_id: Optional[str] = None,
        template_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> OutboundMessage:
        now = datetime.now(timezone.utc)
        message = OutboundMessage(
            id=str(uuid.uuid4()),
            linked_account_id=linked_account_id,
            provider_message_id=provider_message_id,
            provider_thread_id=provider_thread_id,
            person_id=person_id,
            template_id=template_id,
            recipients=recipients,
            subject=subject,
            body_text=body_text,
            body_html=body_html,
            status=MessageStatus.SENT,
            sent_at=now,
            metadata=metadata or {},
            created_at=now,
            updated_at=now,
        )
        await self._store.insert_outbound_message(message)
        await self._store.touch_last_sync(account_id=linked_account_id, synced_at=now)
        return message

    async def record_sync(
        self,
        *,
        owner_id: Optional[str],
        operation_type: str,
        status: SyncStatus,
        message_count: int = 0,
        error_message: Optional[str] = None,
    ) -> Optional[SyncLogEntry]:
        """Append a sync log entry; storage failures are logged, not raised."""
        entry = SyncLogEntry(
            id=str(uuid.uuid4()),
            owner_id=owner_id,
            operation_type=operation_type,
            status=status,
            message_count=message_count,
            error_message=error_message,
        )
        try:
            await self._store.insert_sync_log(entry)
        except StorageError:
            logger.exception(
                "Failed to write sync log entry",
                extra={"operation_type": operation_type, "owner_id": owner_id},
            )
            return None
        return entry

    async def update_status(
        self,
        message_id: str,
        status: MessageStatus,
        *,
        error_message: Optional[str] = None,
    ) -> OutboundMessage:
        """Apply an asynchronous delivery-status update to a send record."""
        now = datetime.now(timezone.utc)
        updated = await self._store.update_outbound_status(
            message_id=message_id,
            status=status,
            updated_at=now,
            delivered_at=now if status is MessageStatus.DELIVERED else None,
            failed_at=now
            if status in (MessageStatus.FAILED, MessageStatus.BOUNCED)
            else None,
            error_message=error_message,
        )
        if not updated:
            raise NotFoundError(f"Outbound message {message_id} not found.")
        message = await self._store.get_outbound_message(message_id)
        if message is None:  # pragma: no cover - row was just updated
            raise NotFoundError(f"Outbound message {message_id} not found.")
        return message

    async def list_messages(
        self, owner_id: str, *, person_id: Optional[str] = None
    ) -> List[OutboundMessage]:
        return await self._store.list_outbound_messages(
            owner_id=owner_id, person_id=person_id
        )

    async def list_sync_log(self, owner_id: str, *, limit: int = 100) -> List[SyncLogEntry]:
        return await self._store.list_sync_log(owner_id=owner_id, limit=limit)


__all__ = ["DeliveryRecordService"]
