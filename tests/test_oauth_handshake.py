from __future__ import annotations

try:
    from . import _bootstrap  # noqa: F401
except Exception:  # pragma: no cover - fallback for direct execution
    import _bootstrap  # type: ignore # noqa: F401

from datetime import datetime, timezone
from urllib.parse import parse_qs, parse_qsl, urlparse

import httpx
import pytest

from mailvault.core.errors import (
    ErrorKind,
    GrantRevokedError,
    InvalidStateError,
    NoAccountError,
    RefreshError,
    TokenExchangeError,
    UserInfoError,
)


def test_authorization_url_requests_offline_consent(services) -> None:
    url, state = services.handshake_service.build_authorization_url("user-1")

    parsed = urlparse(url)
    query = {key: values[0] for key, values in parse_qs(parsed.query).items()}
    assert parsed.netloc == "accounts.google.com"
    assert query["response_type"] == "code"
    assert query["access_type"] == "offline"
    assert query["prompt"] == "consent"
    assert query["state"] == state
    assert query["client_id"] == "test-client-id"
    assert "https://www.googleapis.com/auth/gmail.send" in query["scope"].split(" ")


@pytest.mark.anyio
async def test_callback_links_account(services, fake_google, cipher) -> None:
    _, state = services.handshake_service.build_authorization_url(
        "user-1", redirect_to="https://app.example.com/settings"
    )

    account, handshake = await services.handshake_service.handle_callback("abc", state)

    assert handshake.redirect_to == "https://app.example.com/settings"
    assert account.owner_id == "user-1"
    assert account.account_email == "rep@example.com"
    assert account.is_active is True
    assert account.token_expires_at > datetime.now(timezone.utc)
    assert account.access_token_encrypted != "access-authorization_code"
    assert cipher.decrypt(account.access_token_encrypted) == "access-authorization_code"
    assert cipher.decrypt(account.refresh_token_encrypted) == "refresh-123"

    token_request = fake_google.calls_to("/token")[0]
    form = dict(parse_qsl(token_request.content.decode()))
    assert form["code"] == "abc"
    assert form["grant_type"] == "authorization_code"
    assert form["client_secret"] == "test-client-secret"

    userinfo_request = fake_google.calls_to("/oauth2/v2/userinfo")[0]
    assert userinfo_request.headers["authorization"] == "Bearer access-authorization_code"


@pytest.mark.anyio
async def test_callback_rejects_unknown_state_without_network(services, fake_google) -> None:
    with pytest.raises(InvalidStateError):
        await services.handshake_service.handle_callback("abc", "bogus")

    assert fake_google.requests == []


@pytest.mark.anyio
async def test_callback_state_cannot_be_replayed(services, fake_google) -> None:
    _, state = services.handshake_service.build_authorization_url("user-1")
    await services.handshake_service.handle_callback("abc", state)

    with pytest.raises(InvalidStateError):
        await services.handshake_service.handle_callback("abc", state)

    assert len(fake_google.calls_to("/token")) == 1


@pytest.mark.anyio
async def test_failed_exchange_stores_nothing(services, fake_google) -> None:
    fake_google.token_status = 400
    _, state = services.handshake_service.build_authorization_url("user-1")

    with pytest.raises(TokenExchangeError) as exc_info:
        await services.handshake_service.handle_callback("abc", state)

    assert "invalid_grant" in exc_info.value.message
    assert await services.token_service.list_accounts("user-1") == []


@pytest.mark.anyio
async def test_missing_refresh_token_fails_exchange(services, fake_google) -> None:
    fake_google.refresh_token = None
    _, state = services.handshake_service.build_authorization_url("user-1")

    with pytest.raises(TokenExchangeError):
        await services.handshake_service.handle_callback("abc", state)

    assert await services.token_service.list_accounts("user-1") == []


@pytest.mark.anyio
async def test_failed_user_info_stores_nothing(services, fake_google) -> None:
    fake_google.userinfo_status = 401
    _, state = services.handshake_service.build_authorization_url("user-1")

    with pytest.raises(UserInfoError):
        await services.handshake_service.handle_callback("abc", state)

    assert await services.token_service.list_accounts("user-1") == []


@pytest.mark.anyio
async def test_expired_account_is_refreshed_through_token_endpoint(
    services, fake_google, cipher
) -> None:
    _, state = services.handshake_service.build_authorization_url("user-1")
    account, _ = await services.handshake_service.handle_callback("abc", state)
    await services.store.update_account_tokens(
        account_id=account.id,
        access_token_encrypted=account.access_token_encrypted,
        refresh_token_encrypted=account.refresh_token_encrypted,
        token_expires_at=datetime(2020, 1, 1, tzinfo=timezone.utc),
        updated_at=datetime.now(timezone.utc),
    )

    token = await services.token_service.get_valid_access_token("user-1", "google")

    assert token == "access-refresh_token"
    refresh_request = fake_google.calls_to("/token")[-1]
    form = dict(parse_qsl(refresh_request.content.decode()))
    assert form["refresh_token"] == "refresh-123"


async def _link_expired_account(services):
    _, state = services.handshake_service.build_authorization_url("user-1")
    account, _ = await services.handshake_service.handle_callback("abc", state)
    await services.store.update_account_tokens(
        account_id=account.id,
        access_token_encrypted=account.access_token_encrypted,
        refresh_token_encrypted=account.refresh_token_encrypted,
        token_expires_at=datetime(2020, 1, 1, tzinfo=timezone.utc),
        updated_at=datetime.now(timezone.utc),
    )
    return account


@pytest.mark.anyio
@pytest.mark.parametrize(
    "failure",
    [
        httpx.ConnectTimeout("timed out"),
        (503, "backend_error"),
        (400, "invalid_request"),
    ],
)
async def test_transient_refresh_failure_leaves_account_active(
    services, fake_google, failure
) -> None:
    account = await _link_expired_account(services)
    fake_google.refresh_failure = failure

    with pytest.raises(RefreshError) as exc_info:
        await services.token_service.get_valid_access_token("user-1", "google")

    assert not isinstance(exc_info.value, GrantRevokedError)
    assert exc_info.value.kind is ErrorKind.REFRESH_FAILED
    stored = await services.store.get_account(account.id)
    assert stored.is_active is True


@pytest.mark.anyio
@pytest.mark.parametrize(
    "failure", [(400, "invalid_grant"), (401, "unauthorized_client")]
)
async def test_revoked_refresh_token_deactivates_account(
    services, fake_google, failure
) -> None:
    account = await _link_expired_account(services)
    fake_google.refresh_failure = failure

    with pytest.raises(GrantRevokedError):
        await services.token_service.get_valid_access_token("user-1", "google")

    stored = await services.store.get_account(account.id)
    assert stored.is_active is False
    with pytest.raises(NoAccountError):
        await services.token_service.get_valid_access_token("user-1", "google")
