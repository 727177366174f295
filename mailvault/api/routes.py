"""
FastAPI routes for the mail vault.
"""

from __future__ import annotations

import logging
from http import HTTPStatus
from typing import Annotated, Any, List

from fastapi import APIRouter, Depends, Query, Request, Response
from fastapi.responses import JSONResponse, RedirectResponse

from mailvault.core.errors import UnauthorizedError
from mailvault.dependencies import (
    get_app_settings,
    get_delivery_records,
    get_dispatch_service,
    get_handshake_service,
    get_template_service,
    get_token_service,
)
from mailvault.models.mail import MessageTemplate, OutboundMessage, SyncLogEntry
from mailvault.schemas import (
    AuthorizationUrlResponse,
    ConnectionStatus,
    DeliveryStatusUpdate,
    DispatchResult,
    LinkedAccountSummary,
    OAuthCallbackPayload,
    OAuthCallbackResult,
    SendEmailRequest,
    TemplateCreateRequest,
)

router = APIRouter()
logger = logging.getLogger(__name__)

PROVIDER = "google"


def _require_user(user_id: str | None) -> str:
    if not user_id or not user_id.strip():
        raise UnauthorizedError()
    return user_id.strip()


def _wants_redirect(request: Request, redirect: bool) -> bool:
    accept_header = request.headers.get("accept", "")
    return redirect or "text/html" in accept_header.lower()


@router.get("/health", status_code=HTTPStatus.OK)
async def healthcheck() -> dict:
    """Simple health endpoint for monitoring."""
    return {"status": "ok"}


@router.get("/auth/google/authorize", status_code=HTTPStatus.OK)
async def start_google_oauth_flow(
    request: Request,
    handshake: Annotated[Any, Depends(get_handshake_service)],
    user_id: str | None = Query(
        default=None, description="User identifier initiating authentication."
    ),
    redirect_to: str | None = Query(
        default=None,
        description="Optional URL to redirect back to on successful authentication.",
    ),
    redirect: bool = Query(
        default=False,
        description="When true, respond with a redirect to the Google consent screen.",
    ),
) -> Response:
    """
    Kick off the OAuth flow by generating a state token and authorization URL.
    """
    owner_id = _require_user(user_id)
    authorization_url, state = handshake.build_authorization_url(
        owner_id, redirect_to=redirect_to
    )

    if _wants_redirect(request, redirect):
        return RedirectResponse(url=authorization_url, status_code=HTTPStatus.TEMPORARY_REDIRECT)

    body = AuthorizationUrlResponse(authorization_url=authorization_url, state=state)
    return JSONResponse(content=body.model_dump())


@router.post(
    "/auth/google/callback",
    response_model=OAuthCallbackResult,
    status_code=HTTPStatus.OK,
)
async def handle_google_oauth_callback(
    payload: OAuthCallbackPayload,
    handshake: Annotated[Any, Depends(get_handshake_service)],
) -> OAuthCallbackResult:
    """Complete the OAuth exchange, store tokens, and return redirect metadata."""
    account, state = await handshake.handle_callback(payload.code, payload.state)
    return OAuthCallbackResult(
        account_id=account.id,
        account_email=account.account_email,
        redirect_to=state.redirect_to,
    )


@router.get("/auth/google/callback", status_code=HTTPStatus.OK)
async def handle_google_oauth_callback_get(
    request: Request,
    handshake: Annotated[Any, Depends(get_handshake_service)],
    settings: Annotated[Any, Depends(get_app_settings)],
    state: str = Query(..., description="OAuth state token."),
    code: str = Query(..., description="Authorization code returned by Google."),
    redirect: bool = Query(
        default=False,
        description="When true, redirect browser clients instead of returning JSON.",
    ),
) -> Response:
    payload = OAuthCallbackPayload(state=state, code=code)
    result = await handle_google_oauth_callback(payload=payload, handshake=handshake)

    redirect_target = result.redirect_to or settings.frontend_base_url
    if redirect_target and _wants_redirect(request, redirect):
        return RedirectResponse(url=str(redirect_target), status_code=HTTPStatus.TEMPORARY_REDIRECT)

    return JSONResponse(content=result.model_dump())


@router.get("/accounts/google", response_model=ConnectionStatus)
async def get_google_connection(
    token_service: Annotated[Any, Depends(get_token_service)],
    user_id: str | None = Query(default=None),
) -> ConnectionStatus:
    owner_id = _require_user(user_id)
    accounts = await token_service.list_accounts(owner_id)
    summaries = [
        LinkedAccountSummary.model_validate(account.model_dump())
        for account in accounts
        if account.provider == PROVIDER
    ]
    return ConnectionStatus(
        provider=PROVIDER,
        connected=any(summary.is_active for summary in summaries),
        accounts=summaries,
    )


@router.delete("/accounts/google", status_code=HTTPStatus.OK)
async def disconnect_google_account(
    token_service: Annotated[Any, Depends(get_token_service)],
    user_id: str | None = Query(default=None),
) -> dict:
    """Soft-delete the user's Google credentials."""
    owner_id = _require_user(user_id)
    disconnected = await token_service.disconnect(owner_id, PROVIDER)
    return {"status": "disconnected", "accounts": disconnected}


@router.post("/mail/send", response_model=DispatchResult, status_code=HTTPStatus.OK)
async def send_email(
    payload: SendEmailRequest,
    dispatcher: Annotated[Any, Depends(get_dispatch_service)],
    user_id: str | None = Query(default=None),
) -> DispatchResult:
    owner_id = _require_user(user_id)
    return await dispatcher.dispatch(owner_id, payload)


@router.get("/mail/messages", response_model=List[OutboundMessage])
async def list_sent_messages(
    records: Annotated[Any, Depends(get_delivery_records)],
    user_id: str | None = Query(default=None),
    person_id: str | None = Query(
        default=None, description="Only return messages sent to this CRM person."
    ),
) -> List[OutboundMessage]:
    owner_id = _require_user(user_id)
    return await records.list_messages(owner_id, person_id=person_id)


@router.post("/mail/messages/{message_id}/status", response_model=OutboundMessage)
async def update_message_status(
    message_id: str,
    payload: DeliveryStatusUpdate,
    records: Annotated[Any, Depends(get_delivery_records)],
) -> OutboundMessage:
    """Record a delivery, failure or bounce notification for a sent message."""
    return await records.update_status(
        message_id, payload.status, error_message=payload.error_message
    )


@router.get("/templates", response_model=List[MessageTemplate])
async def list_templates(
    templates: Annotated[Any, Depends(get_template_service)],
    user_id: str | None = Query(default=None),
) -> List[MessageTemplate]:
    return await templates.list_templates(user_id)


@router.post(
    "/templates", response_model=MessageTemplate, status_code=HTTPStatus.CREATED
)
async def create_template(
    payload: TemplateCreateRequest,
    templates: Annotated[Any, Depends(get_template_service)],
    user_id: str | None = Query(default=None),
) -> MessageTemplate:
    return await templates.create_template(
        name=payload.name,
        subject=payload.subject,
        body_html=payload.body_html,
        body_text=payload.body_text,
        category=payload.category,
        placeholders=payload.placeholders,
        owner_id=user_id,
    )


@router.get("/sync-logs", response_model=List[SyncLogEntry])
async def list_sync_logs(
    records: Annotated[Any, Depends(get_delivery_records)],
    user_id: str | None = Query(default=None),
    limit: int = Query(default=100, ge=1, le=500),
) -> List[SyncLogEntry]:
    owner_id = _require_user(user_id)
    return await records.list_sync_log(owner_id, limit=limit)
