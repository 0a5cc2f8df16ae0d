"""Telegram integration helpers."""

from .api_utils import TelegramUnavailable, call_with_retry
from .filters import AdminFilter
from .membership import TelegramMembershipOracle
from .webapp import Identity, IdentityVerifier, InitDataVerifier

__all__ = [
    "call_with_retry",
    "TelegramUnavailable",
    "AdminFilter",
    "TelegramMembershipOracle",
    "Identity",
    "IdentityVerifier",
    "InitDataVerifier",
]
