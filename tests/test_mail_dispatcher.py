from __future__ import annotations

try:
    from . import _bootstrap  # noqa: F401
except Exception:  # pragma: no cover - fallback for direct execution
    import _bootstrap  # type: ignore # noqa: F401

import base64
import email

import pytest

from mailvault.core.errors import (
    NoAccountError,
    NotFoundError,
    RateLimitedError,
    SendError,
    StorageError,
    UnauthorizedError,
    ValidationFailedError,
)
from mailvault.models.mail import MessageStatus, SyncStatus
from mailvault.models.oauth import TokenGrant
from mailvault.schemas import SendEmailRequest
from mailvault.services.delivery_records import DeliveryRecordService
from mailvault.services.mail_composer import MessageComposer
from mailvault.services.mail_dispatcher import MailDispatchService, invalid_addresses
from mailvault.services.rate_limiter import SlidingWindowRateLimiter


async def _link_account(services, owner_id: str = "user-1"):
    return await services.token_service.save_grant(
        owner_id=owner_id,
        provider="google",
        account_email="rep@example.com",
        grant=TokenGrant(
            access_token="live-access",
            refresh_token="live-refresh",
            expires_in=3600,
        ),
    )


def _dispatcher(services, *, max_requests: int = 10, records=None) -> MailDispatchService:
    return MailDispatchService(
        token_service=services.token_service,
        rate_limiter=SlidingWindowRateLimiter(),
        gmail_client=services.gmail_client,
        composer=MessageComposer(),
        templates=services.template_service,
        records=records or services.delivery_records,
        max_requests=max_requests,
        window_ms=60_000,
    )


def _request(**overrides) -> SendEmailRequest:
    values = {
        "to": ["ada@acme.io"],
        "subject": "Quarterly review",
        "body": "See you Tuesday.",
        "person_id": "person-7",
    }
    values.update(overrides)
    return SendEmailRequest(**values)


class FailingSendRecords(DeliveryRecordService):
    async def record_sent(self, **kwargs):
        raise StorageError("disk full")


@pytest.mark.parametrize(
    ("addresses", "expected"),
    [
        (["ada@acme.io", "bob.smith+crm@mail.example.org"], []),
        (["not-an-email"], ["not-an-email"]),
        (["ada@acme"], ["ada@acme"]),
        (["two@@acme.io"], ["two@@acme.io"]),
        (["Ada <ada@acme.io>"], ["Ada <ada@acme.io>"]),
    ],
)
def test_invalid_addresses(addresses, expected) -> None:
    assert invalid_addresses(addresses) == expected


@pytest.mark.anyio
async def test_dispatch_sends_and_records(services, fake_google) -> None:
    account = await _link_account(services)
    dispatcher = _dispatcher(services)

    result = await dispatcher.dispatch("user-1", _request(bcc=["audit@acme.io"]))

    assert result.message_id == "msg-1"
    assert result.thread_id == "thread-1"
    assert result.status is MessageStatus.SENT

    send_request = fake_google.calls_to("/gmail/v1/users/me/messages/send")[0]
    assert send_request.headers["authorization"] == "Bearer live-access"
    raw = fake_google.sent[0]["raw"]
    message = email.message_from_bytes(base64.urlsafe_b64decode(raw + "=" * (-len(raw) % 4)))
    assert message["From"] == "rep@example.com"
    assert message["Bcc"] == "audit@acme.io"

    messages = await services.delivery_records.list_messages("user-1")
    assert len(messages) == 1
    assert messages[0].id == result.record_id
    assert messages[0].linked_account_id == account.id
    assert messages[0].recipients == ["ada@acme.io"]
    assert messages[0].metadata["all_recipients"] == ["ada@acme.io", "audit@acme.io"]
    assert messages[0].status is MessageStatus.SENT

    log = await services.delivery_records.list_sync_log("user-1")
    assert [(entry.status, entry.message_count) for entry in log] == [(SyncStatus.SUCCESS, 1)]

    refreshed = await services.token_service.get_active_account("user-1", "google")
    assert refreshed.last_sync_at is not None


@pytest.mark.anyio
async def test_dispatch_with_template(services, fake_google) -> None:
    await _link_account(services)
    template = await services.template_service.create_template(
        name="Intro",
        subject="Hello {{first_name}}",
        body_html="<p>Welcome to {{company}}</p>",
    )

    result = await _dispatcher(services).dispatch(
        "user-1",
        _request(subject="", template_id=template.id, person={"name": "Ada Lovelace", "company": "Acme"}),
    )

    stored = (await services.delivery_records.list_messages("user-1"))[0]
    assert stored.id == result.record_id
    assert stored.subject == "Hello Ada"
    assert stored.body_html == "<p>Welcome to Acme</p>"
    assert stored.template_id == template.id


@pytest.mark.anyio
async def test_empty_recipients_fail_without_network(services, fake_google) -> None:
    await _link_account(services)

    with pytest.raises(ValidationFailedError):
        await _dispatcher(services).dispatch("user-1", _request(to=[]))

    assert fake_google.requests == []


@pytest.mark.anyio
async def test_invalid_recipient_fails_without_network(services, fake_google) -> None:
    await _link_account(services)

    with pytest.raises(ValidationFailedError) as exc_info:
        await _dispatcher(services).dispatch("user-1", _request(cc=["bad-address"]))

    assert exc_info.value.details == {"invalid": ["bad-address"]}
    assert fake_google.requests == []


@pytest.mark.anyio
async def test_blank_owner_is_unauthorized(services) -> None:
    with pytest.raises(UnauthorizedError):
        await _dispatcher(services).dispatch("", _request())


@pytest.mark.anyio
async def test_rate_limited_before_token_lookup(services, fake_google) -> None:
    await _link_account(services)
    dispatcher = _dispatcher(services, max_requests=1)

    await dispatcher.dispatch("user-1", _request())
    with pytest.raises(RateLimitedError) as exc_info:
        await dispatcher.dispatch("user-1", _request())

    assert exc_info.value.retry_after >= 1
    assert len(fake_google.sent) == 1
    log = await services.delivery_records.list_sync_log("user-1")
    errors = [entry for entry in log if entry.status is SyncStatus.ERROR]
    assert len(errors) == 1
    assert errors[0].error_message.startswith("RATE_LIMITED")


@pytest.mark.anyio
async def test_send_failure_is_recorded_as_sync_error(services, fake_google) -> None:
    await _link_account(services)
    fake_google.send_status = 500

    with pytest.raises(SendError) as exc_info:
        await _dispatcher(services).dispatch("user-1", _request())

    assert "Quota exceeded" in exc_info.value.message
    assert await services.delivery_records.list_messages("user-1") == []
    log = await services.delivery_records.list_sync_log("user-1")
    assert [entry.status for entry in log] == [SyncStatus.ERROR]
    assert log[0].error_message.startswith("SEND_FAILED")


@pytest.mark.anyio
async def test_provider_rejection_keeps_client_status(services, fake_google) -> None:
    await _link_account(services)
    fake_google.send_status = 429

    with pytest.raises(SendError) as exc_info:
        await _dispatcher(services).dispatch("user-1", _request())

    assert exc_info.value.status_code == 429


@pytest.mark.anyio
async def test_dispatch_without_account(services, fake_google) -> None:
    with pytest.raises(NoAccountError):
        await _dispatcher(services).dispatch("user-1", _request())

    assert fake_google.requests == []


@pytest.mark.anyio
async def test_record_failure_after_send_still_succeeds(services, fake_google) -> None:
    await _link_account(services)
    dispatcher = _dispatcher(services, records=FailingSendRecords(services.store))

    result = await dispatcher.dispatch("user-1", _request())

    assert result.message_id == "msg-1"
    assert result.record_id is None
    log = await services.delivery_records.list_sync_log("user-1")
    assert [entry.status for entry in log] == [SyncStatus.SUCCESS]


@pytest.mark.anyio
async def test_delivery_status_updates(services, fake_google) -> None:
    await _link_account(services)
    result = await _dispatcher(services).dispatch("user-1", _request())

    delivered = await services.delivery_records.update_status(
        result.record_id, MessageStatus.DELIVERED
    )
    assert delivered.status is MessageStatus.DELIVERED
    assert delivered.delivered_at is not None

    bounced = await services.delivery_records.update_status(
        result.record_id, MessageStatus.BOUNCED, error_message="mailbox full"
    )
    assert bounced.failed_at is not None
    assert bounced.error_message == "mailbox full"

    with pytest.raises(NotFoundError):
        await services.delivery_records.update_status("missing", MessageStatus.FAILED)

    assert await services.delivery_records.list_messages("user-1", person_id="person-7")
    assert await services.delivery_records.list_messages("user-1", person_id="other") == []
