"""
FastAPI dependency utilities for injecting configuration.
"""

from fastapi import Request

from mailvault.core.config import AppSettings


def get_app_settings(request: Request) -> AppSettings:
    """FastAPI dependency returning the settings the app was built with."""
    return request.app.state.settings


__all__ = ["get_app_settings"]
