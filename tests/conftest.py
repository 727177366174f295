"""Pytest configuration shared across the suite."""

try:
    from . import _bootstrap  # noqa: F401
except Exception:  # pragma: no cover - fallback for direct execution
    import _bootstrap  # type: ignore # noqa: F401

import json
from urllib.parse import parse_qsl

import httpx
import pytest

from mailvault.clients.sqlite_store import SQLiteStore
from mailvault.core.config import AppSettings, StorageSettings
from mailvault.dependencies import ServiceContainer, build_services
from mailvault.services.token_cipher import TokenCipherService

TEST_KEY = "bWFpbHZhdWx0LXRlc3QtZW5jcnlwdGlvbi1rZXktMzI="


@pytest.fixture
def anyio_backend() -> str:
    """Force AnyIO-powered tests to run against asyncio backend only."""
    return "asyncio"


@pytest.fixture
def store(tmp_path) -> SQLiteStore:
    return SQLiteStore(str(tmp_path / "vault.db"))


@pytest.fixture
def cipher() -> TokenCipherService:
    return TokenCipherService(key=TEST_KEY)


class FakeGoogle:
    """In-memory stand-in for Google's token, identity and Gmail endpoints."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.email = "rep@example.com"
        self.refresh_token: str | None = "refresh-123"
        self.token_status = 200
        self.userinfo_status = 200
        self.send_status = 200
        self.sent: list[dict] = []
        # Either an exception to raise or a (status, oauth error code) pair.
        self.refresh_failure: Exception | tuple[int, str] | None = None

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def calls_to(self, path: str) -> list[httpx.Request]:
        return [request for request in self.requests if request.url.path == path]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.host == "oauth2.googleapis.com":
            return self._token(request)
        if request.url.path == "/oauth2/v2/userinfo":
            if self.userinfo_status != 200:
                return httpx.Response(
                    self.userinfo_status,
                    json={"error": {"code": self.userinfo_status, "message": "Invalid Credentials"}},
                )
            return httpx.Response(200, json={"id": "1234", "email": self.email})
        if request.url.path.endswith("/messages/send"):
            if self.send_status != 200:
                return httpx.Response(
                    self.send_status,
                    json={"error": {"code": self.send_status, "message": "Quota exceeded"}},
                )
            self.sent.append(json.loads(request.content))
            return httpx.Response(
                200, json={"id": f"msg-{len(self.sent)}", "threadId": "thread-1"}
            )
        return httpx.Response(404)

    def _token(self, request: httpx.Request) -> httpx.Response:
        form = dict(parse_qsl(request.content.decode()))
        if form["grant_type"] == "refresh_token" and self.refresh_failure is not None:
            if isinstance(self.refresh_failure, Exception):
                raise self.refresh_failure
            status, error = self.refresh_failure
            return httpx.Response(
                status, json={"error": error, "error_description": "Refresh rejected"}
            )
        if self.token_status != 200:
            return httpx.Response(
                self.token_status,
                json={"error": "invalid_grant", "error_description": "Bad Request"},
            )
        payload = {
            "access_token": f"access-{form['grant_type']}",
            "expires_in": 3599,
            "scope": "https://www.googleapis.com/auth/gmail.send",
            "token_type": "Bearer",
        }
        if form["grant_type"] == "authorization_code" and self.refresh_token:
            payload["refresh_token"] = self.refresh_token
        return httpx.Response(200, json=payload)


@pytest.fixture
def fake_google() -> FakeGoogle:
    return FakeGoogle()


@pytest.fixture
def settings(tmp_path) -> AppSettings:
    return AppSettings(
        frontend_base_url=None,
        storage=StorageSettings(database_path=str(tmp_path / "app.db")),
    )


@pytest.fixture
def services(settings: AppSettings, fake_google: FakeGoogle) -> ServiceContainer:
    return build_services(settings, transport=fake_google.transport)
