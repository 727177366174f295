"""Service layer exports."""

from .delivery_records import DeliveryRecordService
from .linked_accounts import TokenLifecycleService
from .mail_composer import ComposedMessage, MessageComposer
from .mail_dispatcher import MailDispatchService
from .oauth_handshake import OAuthHandshakeService
from .oauth_state import OAuthStateManager
from .rate_limiter import SlidingWindowRateLimiter
from .templates import TemplateRenderer, TemplateService
from .token_cipher import TokenCipherService

__all__ = [
    "ComposedMessage",
    "DeliveryRecordService",
    "MailDispatchService",
    "MessageComposer",
    "OAuthHandshakeService",
    "OAuthStateManager",
    "SlidingWindowRateLimiter",
    "TemplateRenderer",
    "TemplateService",
    "TokenCipherService",
    "TokenLifecycleService",
]
