"""Expose constructed client wrappers."""

from .gmail import GmailClient
from .google_auth import GoogleOAuthClient
from .sqlite_store import SQLiteStore

__all__ = [
    "GmailClient",
    "GoogleOAuthClient",
    "SQLiteStore",
]
