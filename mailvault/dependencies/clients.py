"""
Construct shared clients and services once per process and expose them as
FastAPI dependencies.

``build_services`` is called by ``create_app``; the resulting container is
attached to ``app.state`` and every component receives its collaborators
through its constructor.
"""

from __future__ import annotations

from dataclasses import dataclass

import httpx
from fastapi import Request

from mailvault.clients import GmailClient, GoogleOAuthClient, SQLiteStore
from mailvault.core.config import AppSettings
from mailvault.services import (
    DeliveryRecordService,
    MailDispatchService,
    MessageComposer,
    OAuthHandshakeService,
    OAuthStateManager,
    SlidingWindowRateLimiter,
    TemplateService,
    TokenCipherService,
    TokenLifecycleService,
)


@dataclass(slots=True)
class ServiceContainer:
    store: SQLiteStore
    token_cipher: TokenCipherService
    state_manager: OAuthStateManager
    rate_limiter: SlidingWindowRateLimiter
    oauth_client: GoogleOAuthClient
    gmail_client: GmailClient
    token_service: TokenLifecycleService
    handshake_service: OAuthHandshakeService
    template_service: TemplateService
    delivery_records: DeliveryRecordService
    dispatch_service: MailDispatchService


def build_services(
    settings: AppSettings,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
) -> ServiceContainer:
    """Wire every component from ``settings``.

    ``transport`` replaces the network layer of the provider clients, which
    lets tests run the full stack against ``httpx.MockTransport``.
    """
    store = SQLiteStore(settings.storage.database_path)
    token_cipher = TokenCipherService(key=settings.security.token_encryption_key)
    state_manager = OAuthStateManager(
        secret_key=settings.google.client_secret,
        ttl_seconds=settings.oauth.state_ttl_seconds,
    )
    rate_limiter = SlidingWindowRateLimiter(retention_ms=settings.rate_limit.retention_ms)
    oauth_client = GoogleOAuthClient(settings.google, settings.oauth, transport=transport)
    gmail_client = GmailClient(transport=transport)
    token_service = TokenLifecycleService(
        store,
        oauth_client,
        token_cipher,
        refresh_skew_seconds=settings.oauth.refresh_skew_seconds,
    )
    template_service = TemplateService(store)
    delivery_records = DeliveryRecordService(store)
    return ServiceContainer(
        store=store,
        token_cipher=token_cipher,
        state_manager=state_manager,
        rate_limiter=rate_limiter,
        oauth_client=oauth_client,
        gmail_client=gmail_client,
        token_service=token_service,
        handshake_service=OAuthHandshakeService(oauth_client, state_manager, token_service),
        template_service=template_service,
        delivery_records=delivery_records,
        dispatch_service=MailDispatchService(
            token_service=token_service,
            rate_limiter=rate_limiter,
            gmail_client=gmail_client,
            composer=MessageComposer(),
            templates=template_service,
            records=delivery_records,
            max_requests=settings.rate_limit.send_max_requests,
            window_ms=settings.rate_limit.send_window_ms,
        ),
    )


def _services(request: Request) -> ServiceContainer:
    return request.app.state.services


def get_handshake_service(request: Request) -> OAuthHandshakeService:
    return _services(request).handshake_service


def get_token_service(request: Request) -> TokenLifecycleService:
    return _services(request).token_service


def get_dispatch_service(request: Request) -> MailDispatchService:
    return _services(request).dispatch_service


def get_template_service(request: Request) -> TemplateService:
    return _services(request).template_service


def get_delivery_records(request: Request) -> DeliveryRecordService:
    return _services(request).delivery_records


__all__ = [
    "ServiceContainer",
    "build_services",
    "get_delivery_records",
    "get_dispatch_service",
    "get_handshake_service",
    "get_template_service",
    "get_token_service",
]
