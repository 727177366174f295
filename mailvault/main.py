"""
FastAPI application entrypoint for the mail vault.
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from mailvault.api.routes import router as api_router
from mailvault.core.config import AppSettings, get_settings
from mailvault.core.errors import MailVaultError, RateLimitedError
from mailvault.core.logging import configure_logging
from mailvault.dependencies import ServiceContainer, build_services

logger = logging.getLogger(__name__)


async def handle_mail_vault_error(request: Request, exc: MailVaultError) -> JSONResponse:
    """Render domain failures as ``{"error", "code"}`` with the kind's status."""
    if exc.status_code >= 500:
        logger.error(
            "Request failed: %s",
            exc.message,
            extra={"path": request.url.path, "error_kind": exc.kind.value},
        )
    headers = None
    if isinstance(exc, RateLimitedError):
        headers = {"Retry-After": str(exc.retry_after)}
    return JSONResponse(status_code=int(exc.status_code), content=exc.to_dict(), headers=headers)


def create_app(
    settings: AppSettings | None = None,
    services: ServiceContainer | None = None,
) -> FastAPI:
    """Factory for the FastAPI application."""
    settings = settings or get_settings()
    configure_logging(settings.log_level)

    app = FastAPI(
        title="Mail Vault",
        version="0.1.0",
        description="Linked mailbox credentials and outbound email dispatch.",
    )
    app.state.settings = settings
    app.state.services = services or build_services(settings)
    app.add_exception_handler(MailVaultError, handle_mail_vault_error)
    app.include_router(api_router, prefix="/api")
    return app


app = create_app()

__all__ = ["app", "create_app", "handle_mail_vault_error"]
