"""
Validate, throttle, send and record outbound email.
"""

from __future__ import annotations

import logging
import math
import re
from typing import Iterable, List, Optional

from mailvault.clients.gmail import GmailClient
from mailvault.core.errors import (
    MailVaultError,
    RateLimitedError,
    StorageError,
    UnauthorizedError,
    ValidationFailedError,
)
from mailvault.models.mail import MessageTemplate, SyncStatus
from mailvault.schemas import DispatchResult, SendEmailRequest
from mailvault.services.delivery_records import DeliveryRecordService
from mailvault.services.linked_accounts import TokenLifecycleService
from mailvault.services.mail_composer import MessageComposer
from mailvault.services.rate_limiter import SlidingWindowRateLimiter
from mailvault.services.templates import TemplateService

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r"^[^\s@<>(),;:\"\[\]]+@[^\s@<>(),;:\"\[\]]+\.[A-Za-z0-9-]{2,}$")

SEND_OPERATION = "send_email"


def invalid_addresses(addresses: Iterable[str]) -> List[str]:
    return [address for address in addresses if not EMAIL_PATTERN.match(address or "")]


class MailDispatchService:
    """Send one message on behalf of a user's linked account.

    Steps run in a fixed order: request validation, rate limiting, token
    retrieval, provider send, record write. Validation and rate-limit
    failures never reach the network.
    """

    def __init__(
        self,
        *,
        token_service: TokenLifecycleService,
        rate_limiter: SlidingWindowRateLimiter,
        gmail_client: GmailClient,
        composer: MessageComposer,
        templates: TemplateService,
        records: DeliveryRecordService,
        max_requests: int = 10,
        window_ms: int = 60_000,
        provider: str = "google",
    ) -> None:
        self._tokens = token_service
        self._limiter = rate_limiter
        self._gmail = gmail_client
        self._composer = composer
        self._templates = templates
        self._records = records
        self._max_requests = max_requests
        self._window_ms = window_ms
        self._provider = provider

    def rate_limit_key(self, owner_id: str) -> str:
        return f"{self._provider}:{owner_id}"

    @staticmethod
    def validate_request(request: SendEmailRequest) -> None:
        if not request.to:
            raise ValidationFailedError("At least one recipient is required.")
        bad = invalid_addresses([*request.to, *request.cc, *request.bcc])
        if bad:
            raise ValidationFailedError(
                "Invalid recipient email address.", details={"invalid": bad}
            )
        if not request.template_id and not request.subject.strip():
            raise ValidationFailedError("A subject is required.")

    async def dispatch(self, owner_id: str, request: SendEmailRequest) -> DispatchResult:
        if not owner_id:
            raise UnauthorizedError()
        self.validate_request(request)

        key = self.rate_limit_key(owner_id)
        if not self._limiter.allow(key, self._max_requests, self._window_ms):
            retry_after = math.ceil(self._limiter.retry_after_ms(key, self._window_ms) / 1000)
            error = RateLimitedError(retry_after=max(retry_after, 1))
            await self._audit_failure(owner_id, error)
            raise error

        try:
            return await self._send(owner_id, request)
        except MailVaultError as exc:
            await self._audit_failure(owner_id, exc)
            raise

    async def _send(self, owner_id: str, request: SendEmailRequest) -> DispatchResult:
        template: Optional[MessageTemplate] = None
        if request.template_id:
            template = await self._templates.get_template(request.template_id)

        account = await self._tokens.get_active_account(owner_id, self._provider)
        access_token = await self._tokens.get_valid_access_token(owner_id, self._provider)

        composed = self._composer.compose(
            request, sender=account.account_email, template=template
        )
        result = await self._gmail.send_raw_message(
            access_token=access_token, raw=composed.raw
        )
        message_id = result["id"]
        thread_id = result.get("threadId")
        logger.info(
            "Email sent",
            extra={"owner_id": owner_id, "provider_message_id": message_id},
        )

        record_id: Optional[str] = None
        try:
            record = await self._records.record_sent(
                linked_account_id=account.id,
                provider_message_id=message_id,
                provider_thread_id=thread_id,
                recipients=list(request.to),
                subject=composed.subject,
                body_text=composed.body_text,
                body_html=composed.body_html,
                person_id=request.person_id,
                template_id=request.template_id,
                metadata={
                    "cc": list(request.cc),
                    "bcc": list(request.bcc),
                    "all_recipients": [*request.to, *request.cc, *request.bcc],
                },
            )
            record_id = record.id
        except StorageError:
            logger.exception(
                "Email sent but the send record could not be stored",
                extra={"owner_id": owner_id, "provider_message_id": message_id},
            )

        await self._records.record_sync(
            owner_id=owner_id,
            operation_type=SEND_OPERATION,
            status=SyncStatus.SUCCESS,
            message_count=1,
        )
        return DispatchResult(message_id=message_id, thread_id=thread_id, record_id=record_id)

    async def _audit_failure(self, owner_id: str, error: MailVaultError) -> None:
        logger.warning(
            "Email dispatch failed",
            extra={"owner_id": owner_id, "error_kind": error.kind.value},
        )
        await self._records.record_sync(
            owner_id=owner_id,
            operation_type=SEND_OPERATION,
            status=SyncStatus.ERROR,
            error_message=f"{error.kind.value}: {error.message}",
        )


__all__ = ["EMAIL_PATTERN", "MailDispatchService", "invalid_addresses"]
