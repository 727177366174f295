"""
Error taxonomy shared by the vault, the OAuth handshake and mail dispatch.

Every failure a caller can act on carries a stable ``kind`` so the HTTP layer
(and any other presentation layer) can render one actionable message per
failure kind without parsing free-form text.
"""

from __future__ import annotations

from enum import Enum
from http import HTTPStatus
from typing import Any, Dict, Optional


class ErrorKind(str, Enum):
    """Stable identifiers for every failure surfaced to callers."""

    UNAUTHORIZED = "UNAUTHORIZED"
    NO_ACCOUNT = "NO_ACCOUNT"
    INVALID_STATE = "INVALID_STATE"
    TOKEN_EXCHANGE_FAILED = "TOKEN_EXCHANGE_FAILED"
    USER_INFO_FAILED = "USER_INFO_FAILED"
    REFRESH_FAILED = "REFRESH_FAILED"
    STORAGE_FAILED = "STORAGE_FAILED"
    SEND_FAILED = "SEND_FAILED"
    RATE_LIMITED = "RATE_LIMITED"
    DECRYPTION_FAILED = "DECRYPTION_FAILED"
    VALIDATION_FAILED = "VALIDATION_FAILED"
    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"
    NOT_FOUND = "NOT_FOUND"


class MailVaultError(Exception):
    """Base class for failures carrying an :class:`ErrorKind`."""

    kind: ErrorKind = ErrorKind.STORAGE_FAILED
    status_code: int = HTTPStatus.INTERNAL_SERVER_ERROR
    default_message = "Unexpected mail vault failure."

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        status_code: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.message = message or self.default_message
        if status_code is not None:
            self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize into the JSON error body returned by the API."""
        payload: Dict[str, Any] = {"error": self.message, "code": self.kind.value}
        if self.details:
            payload["details"] = self.details
        return payload


class UnauthorizedError(MailVaultError):
    kind = ErrorKind.UNAUTHORIZED
    status_code = HTTPStatus.UNAUTHORIZED
    default_message = "User not authenticated."


class NoAccountError(MailVaultError):
    kind = ErrorKind.NO_ACCOUNT
    status_code = HTTPStatus.NOT_FOUND
    default_message = "No account connected. Please authenticate first."


class InvalidStateError(MailVaultError):
    kind = ErrorKind.INVALID_STATE
    status_code = HTTPStatus.BAD_REQUEST
    default_message = "Invalid or expired state parameter."


class TokenExchangeError(MailVaultError):
    kind = ErrorKind.TOKEN_EXCHANGE_FAILED
    status_code = HTTPStatus.BAD_REQUEST
    default_message = "Failed to exchange authorization code."


class UserInfoError(MailVaultError):
    kind = ErrorKind.USER_INFO_FAILED
    status_code = HTTPStatus.BAD_GATEWAY
    default_message = "Failed to get user info."


class RefreshError(MailVaultError):
    kind = ErrorKind.REFRESH_FAILED
    status_code = HTTPStatus.UNAUTHORIZED
    default_message = "Failed to refresh access token; reconnect the account."


class GrantRevokedError(RefreshError):
    """The provider definitively rejected the refresh token."""

    default_message = "Refresh token was revoked; reconnect the account."


class StorageError(MailVaultError):
    kind = ErrorKind.STORAGE_FAILED
    status_code = HTTPStatus.INTERNAL_SERVER_ERROR
    default_message = "Failed to access credential storage."


class SendError(MailVaultError):
    kind = ErrorKind.SEND_FAILED
    status_code = HTTPStatus.BAD_GATEWAY
    default_message = "Failed to send email."


class RateLimitedError(MailVaultError):
    kind = ErrorKind.RATE_LIMITED
    status_code = HTTPStatus.TOO_MANY_REQUESTS
    default_message = "Rate limit exceeded."

    def __init__(self, message: Optional[str] = None, *, retry_after: int = 60) -> None:
        super().__init__(message, details={"retry_after": retry_after})
        self.retry_after = retry_after


class DecryptionFailedError(MailVaultError):
    kind = ErrorKind.DECRYPTION_FAILED
    status_code = HTTPStatus.INTERNAL_SERVER_ERROR
    default_message = "Failed to decrypt stored credential."


class ValidationFailedError(MailVaultError):
    kind = ErrorKind.VALIDATION_FAILED
    status_code = HTTPStatus.UNPROCESSABLE_ENTITY
    default_message = "Request failed validation."


class ConfigurationError(MailVaultError):
    kind = ErrorKind.CONFIGURATION_ERROR
    status_code = HTTPStatus.INTERNAL_SERVER_ERROR
    default_message = "Service is not configured."


class NotFoundError(MailVaultError):
    kind = ErrorKind.NOT_FOUND
    status_code = HTTPStatus.NOT_FOUND
    default_message = "Record not found."


__all__ = [
    "ConfigurationError",
    "DecryptionFailedError",
    "ErrorKind",
    "GrantRevokedError",
    "InvalidStateError",
    "MailVaultError",
    "NoAccountError",
    "NotFoundError",
    "RateLimitedError",
    "RefreshError",
    "SendError",
    "StorageError",
    "TokenExchangeError",
    "UnauthorizedError",
    "UserInfoError",
    "ValidationFailedError",
]
