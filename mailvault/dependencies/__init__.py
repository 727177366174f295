"""Expose dependency helpers for FastAPI routers."""

from .clients import (
    ServiceContainer,
    build_services,
    get_delivery_records,
    get_dispatch_service,
    get_handshake_service,
    get_template_service,
    get_token_service,
)
from .config import get_app_settings

__all__ = [
    "ServiceContainer",
    "build_services",
    "get_app_settings",
    "get_delivery_records",
    "get_dispatch_service",
    "get_handshake_service",
    "get_template_service",
    "get_token_service",
]
