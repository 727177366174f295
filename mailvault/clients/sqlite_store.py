"""SQLite-backed relational store for linked accounts, templates and send logs."""

from __future__ import annotations

import asyncio
import json
import logging
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, TypeVar

from mailvault.core.errors import StorageError
from mailvault.models.mail import (
    MessageStatus,
    MessageTemplate,
    OutboundMessage,
    SyncLogEntry,
)
from mailvault.models.oauth import LinkedAccount

logger = logging.getLogger(__name__)

T = TypeVar("T")

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS linked_accounts (
        id TEXT PRIMARY KEY,
        owner_id TEXT NOT NULL,
        account_email TEXT NOT NULL,
        provider TEXT NOT NULL,
        access_token_encrypted TEXT NOT NULL,
        refresh_token_encrypted TEXT NOT NULL,
        token_expires_at TEXT NOT NULL,
        scope TEXT NOT NULL DEFAULT '',
        is_active INTEGER NOT NULL DEFAULT 1,
        last_sync_at TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        UNIQUE (owner_id, provider, account_email)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS message_templates (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        subject TEXT NOT NULL,
        body_html TEXT NOT NULL,
        body_text TEXT,
        category TEXT NOT NULL,
        placeholders TEXT NOT NULL,
        is_active INTEGER NOT NULL DEFAULT 1,
        owner_id TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS outbound_messages (
        id TEXT PRIMARY KEY,
        linked_account_id TEXT NOT NULL REFERENCES linked_accounts (id),
        provider_message_id TEXT NOT NULL,
        provider_thread_id TEXT,
        person_id TEXT,
        template_id TEXT,
        recipients TEXT NOT NULL,
        subject TEXT NOT NULL,
        body_text TEXT NOT NULL,
        body_html TEXT,
        status TEXT NOT NULL,
        sent_at TEXT NOT NULL,
        delivered_at TEXT,
        failed_at TEXT,
        error_message TEXT,
        metadata TEXT NOT NULL,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS sync_log_entries (
        id TEXT PRIMARY KEY,
        owner_id TEXT,
        operation_type TEXT NOT NULL,
        status TEXT NOT NULL,
        message_count INTEGER NOT NULL DEFAULT 0,
        error_message TEXT,
        created_at TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_outbound_messages_account "
    "ON outbound_messages (linked_account_id)",
    "CREATE INDEX IF NOT EXISTS idx_sync_log_owner ON sync_log_entries (owner_id)",
)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


class SQLiteStore:
    """Persist vault entities in normalized tables.

    Public methods are coroutines that run the blocking ``sqlite3`` work in a
    worker thread. Every mutation is a single statement so an abandoned
    request can never leave a half-written credential behind.
    """

    def __init__(self, db_path: str) -> None:
        self._db_path = Path(db_path)
        if self._db_path.parent and not self._db_path.parent.exists():
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._ensure_schema()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        return conn

    def _ensure_schema(self) -> None:
        with self._connect() as conn:
            for statement in _SCHEMA:
                conn.execute(statement)

    def _execute(self, func: Callable[[sqlite3.Connection], T]) -> T:
        try:
            conn = self._connect()
            try:
                with conn:
                    return func(conn)
            finally:
                conn.close()
        except sqlite3.Error as exc:
            logger.error("SQLite operation failed: %s", exc)
            raise StorageError() from exc

    async def _run(self, func: Callable[[sqlite3.Connection], T]) -> T:
        return await asyncio.to_thread(self._execute, func)

    # Linked accounts -----------------------------------------------------

    async def upsert_linked_account(self, account: LinkedAccount) -> LinkedAccount:
        """Insert or reactivate the account keyed by (owner, provider, email)."""

        def _upsert(conn: sqlite3.Connection) -> Optional[sqlite3.Row]:
            conn.execute(
                """
                INSERT INTO linked_accounts (
                    id, owner_id, account_email, provider,
                    access_token_encrypted, refresh_token_encrypted,
                    token_expires_at, scope, is_active, last_sync_at,
                    created_at, updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, 1, ?, ?, ?)
                ON CONFLICT (owner_id, provider, account_email) DO UPDATE SET
                    access_token_encrypted = excluded.access_token_encrypted,
                    refresh_token_encrypted = excluded.refresh_token_encrypted,
                    token_expires_at = excluded.token_expires_at,
                    scope = excluded.scope,
                    is_active = 1,
                    updated_at = excluded.updated_at
                """,
                (
                    account.id,
                    account.owner_id,
                    account.account_email,
                    account.provider,
                    account.access_token_encrypted,
                    account.refresh_token_encrypted,
                    _iso(account.token_expires_at),
                    account.scope,
                    _iso(account.last_sync_at),
                    _iso(account.created_at),
                    _iso(account.updated_at),
                ),
            )
            return conn.execute(
                """
                SELECT * FROM linked_accounts
                WHERE owner_id = ? AND provider = ? AND account_email = ?
                """,
                (account.owner_id, account.provider, account.account_email),
            ).fetchone()

        row = await self._run(_upsert)
        if row is None:  # pragma: no cover - the upsert guarantees a row
            raise StorageError("Linked account vanished after upsert.")
        return self._account_from_row(row)

    async def get_active_account(
        self, *, owner_id: str, provider: str
    ) -> Optional[LinkedAccount]:
        row = await self._run(
            lambda conn: conn.execute(
                """
                SELECT * FROM linked_accounts
                WHERE owner_id = ? AND provider = ? AND is_active = 1
                ORDER BY updated_at DESC
                LIMIT 1
                """,
                (owner_id, provider),
            ).fetchone()
        )
        return self._account_from_row(row) if row else None

    async def get_account(self, account_id: str) -> Optional[LinkedAccount]:
        row = await self._run(
            lambda conn: conn.execute(
                "SELECT * FROM linked_accounts WHERE id = ?", (account_id,)
            ).fetchone()
        )
        return self._account_from_row(row) if row else None

    async def list_accounts(self, *, owner_id: str) -> List[LinkedAccount]:
        rows = await self._run(
            lambda conn: conn.execute(
                "SELECT * FROM linked_accounts WHERE owner_id = ? ORDER BY created_at",
                (owner_id,),
            ).fetchall()
        )
        return [self._account_from_row(row) for row in rows]

    async def update_account_tokens(
        self,
        *,
        account_id: str,
        access_token_encrypted: str,
        refresh_token_encrypted: str,
        token_expires_at: datetime,
        updated_at: datetime,
    ) -> None:
        await self._run(
            lambda conn: conn.execute(
                """
                UPDATE linked_accounts
                SET access_token_encrypted = ?, refresh_token_encrypted = ?,
                    token_expires_at = ?, updated_at = ?
                WHERE id = ?
                """,
                (
                    access_token_encrypted,
                    refresh_token_encrypted,
                    _iso(token_expires_at),
                    _iso(updated_at),
                    account_id,
                ),
            )
        )

    async def touch_last_sync(self, *, account_id: str, synced_at: datetime) -> None:
        await self._run(
            lambda conn: conn.execute(
                "UPDATE linked_accounts SET last_sync_at = ? WHERE id = ?",
                (_iso(synced_at), account_id),
            )
        )

    async def deactivate_account(self, *, account_id: str, updated_at: datetime) -> None:
        await self._run(
            lambda conn: conn.execute(
                "UPDATE linked_accounts SET is_active = 0, updated_at = ? WHERE id = ?",
                (_iso(updated_at), account_id),
            )
        )

    async def deactivate_accounts(
        self, *, owner_id: str, provider: str, updated_at: datetime
    ) -> int:
        return await self._run(
            lambda conn: conn.execute(
                """
                UPDATE linked_accounts SET is_active = 0, updated_at = ?
                WHERE owner_id = ? AND provider = ? AND is_active = 1
                """,
                (_iso(updated_at), owner_id, provider),
            ).rowcount
        )

    # Templates -----------------------------------------------------------

    async def insert_template(self, template: MessageTemplate) -> None:
        await self._run(
            lambda conn: conn.execute(
                """
                INSERT INTO message_templates (
                    id, name, subject, body_html, body_text, category,
                    placeholders, is_active, owner_id, created_at, updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    template.id,
                    template.name,
                    template.subject,
                    template.body_html,
                    template.body_text,
                    template.category.value,
                    json.dumps(template.placeholders),
                    int(template.is_active),
                    template.owner_id,
                    _iso(template.created_at),
                    _iso(template.updated_at),
                ),
            )
        )

    async def get_template(self, template_id: str) -> Optional[MessageTemplate]:
        row = await self._run(
            lambda conn: conn.execute(
                "SELECT * FROM message_templates WHERE id = ?", (template_id,)
            ).fetchone()
        )
        return self._template_from_row(row) if row else None

    async def list_templates(
        self, *, owner_id: Optional[str] = None, active_only: bool = True
    ) -> List[MessageTemplate]:
        clauses: List[str] = []
        params: List[Any] = []
        if active_only:
            clauses.append("is_active = 1")
        if owner_id is not None:
            clauses.append("(owner_id = ? OR owner_id IS NULL)")
            params.append(owner_id)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        rows = await self._run(
            lambda conn: conn.execute(
                f"SELECT * FROM message_templates {where} ORDER BY name", params
            ).fetchall()
        )
        return [self._template_from_row(row) for row in rows]

    async def set_template_active(
        self, *, template_id: str, is_active: bool, updated_at: datetime
    ) -> int:
        return await self._run(
            lambda conn: conn.execute(
                "UPDATE message_templates SET is_active = ?, updated_at = ? WHERE id = ?",
                (int(is_active), _iso(updated_at), template_id),
            ).rowcount
        )

    # Outbound messages ---------------------------------------------------

    async def insert_outbound_message(self, message: OutboundMessage) -> None:
        await self._run(
            lambda conn: conn.execute(
                """
                INSERT INTO outbound_messages (
                    id, linked_account_id, provider_message_id, provider_thread_id,
                    person_id, template_id, recipients, subject, body_text,
                    body_html, status, sent_at, delivered_at, failed_at,
                    error_message, metadata, created_at, updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    message.id,
                    message.linked_account_id,
                    message.provider_message_id,
                    message.provider_thread_id,
                    message.person_id,
                    message.template_id,
                    json.dumps(message.recipients),
                    message.subject,
                    message.body_text,
                    message.body_html,
                    message.status.value,
                    _iso(message.sent_at),
                    _iso(message.delivered_at),
                    _iso(message.failed_at),
                    message.error_message,
                    json.dumps(message.metadata),
                    _iso(message.created_at),
                    _iso(message.updated_at),
                ),
            )
        )

    async def get_outbound_message(self, message_id: str) -> Optional[OutboundMessage]:
        row = await self._run(
            lambda conn: conn.execute(
                "SELECT * FROM outbound_messages WHERE id = ?", (message_id,)
            ).fetchone()
        )
        return self._message_from_row(row) if row else None

    async def list_outbound_messages(
        self, *, owner_id: str, person_id: Optional[str] = None
    ) -> List[OutboundMessage]:
        query = """
            SELECT m.* FROM outbound_messages AS m
            JOIN linked_accounts AS a ON a.id = m.linked_account_id
            WHERE a.owner_id = ?
        """
        params: List[Any] = [owner_id]
        if person_id is not None:
            query += " AND m.person_id = ?"
            params.append(person_id)
        query += " ORDER BY m.sent_at DESC"
        rows = await self._run(lambda conn: conn.execute(query, params).fetchall())
        return [self._message_from_row(row) for row in rows]

    async def update_outbound_status(
        self,
        *,
        message_id: str,
        status: MessageStatus,
        updated_at: datetime,
        delivered_at: Optional[datetime] = None,
        failed_at: Optional[datetime] = None,
        error_message: Optional[str] = None,
    ) -> int:
        return await self._run(
            lambda conn: conn.execute(
                """
                UPDATE outbound_messages
                SET status = ?,
                    delivered_at = COALESCE(?, delivered_at),
                    failed_at = COALESCE(?, failed_at),
                    error_message = COALESCE(?, error_message),
                    updated_at = ?
                WHERE id = ?
                """,
                (
                    status.value,
                    _iso(delivered_at),
                    _iso(failed_at),
                    error_message,
                    _iso(updated_at),
                    message_id,
                ),
            ).rowcount
        )

    # Sync log ------------------------------------------------------------

    async def insert_sync_log(self, entry: SyncLogEntry) -> None:
        await self._run(
            lambda conn: conn.execute(
                """
                INSERT INTO sync_log_entries (
                    id, owner_id, operation_type, status, message_count,
                    error_message, created_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    entry.id,
                    entry.owner_id,
                    entry.operation_type,
                    entry.status.value,
                    entry.message_count,
                    entry.error_message,
                    _iso(entry.created_at),
                ),
            )
        )

    async def list_sync_log(self, *, owner_id: str, limit: int = 100) -> List[SyncLogEntry]:
        rows = await self._run(
            lambda conn: conn.execute(
                """
                SELECT * FROM sync_log_entries WHERE owner_id = ?
                ORDER BY created_at DESC LIMIT ?
                """,
                (owner_id, limit),
            ).fetchall()
        )
        return [SyncLogEntry(**dict(row)) for row in rows]

    # Row mapping ---------------------------------------------------------

    @staticmethod
    def _account_from_row(row: sqlite3.Row) -> LinkedAccount:
        data: Dict[str, Any] = dict(row)
        data["is_active"] = bool(data["is_active"])
        return LinkedAccount(**data)

    @staticmethod
    def _template_from_row(row: sqlite3.Row) -> MessageTemplate:
        data: Dict[str, Any] = dict(row)
        data["is_active"] = bool(data["is_active"])
        data["placeholders"] = json.loads(data["placeholders"])
        return MessageTemplate(**data)

    @staticmethod
    def _message_from_row(row: sqlite3.Row) -> OutboundMessage:
        data: Dict[str, Any] = dict(row)
        data["recipients"] = json.loads(data["recipients"])
        data["metadata"] = json.loads(data["metadata"])
        return OutboundMessage(**data)


__all__ = ["SQLiteStore"]
