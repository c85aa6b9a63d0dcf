# backend/callflow/utils/rate_limit.py
"""
Rate limiting for the HTTP surface (slowapi).

Limited endpoints must take a `request: Request` argument. Switch off with
RATE_LIMIT_ENABLED=false (tests do).
"""
from typing import Callable

from slowapi import Limiter
from slowapi.util import get_remote_address

from callflow.config import settings

limiter = Limiter(
    key_func=get_remote_address,
    enabled=bool(getattr(settings, "RATE_LIMIT_ENABLED", True)),
)


def get_limiter() -> Limiter:
    """Get the shared limiter instance."""
    return limiter


# Pre-configured rate limits for different endpoint types
RATE_LIMITS = {
    "webhook": "120/minute",      # Twilio voice + status webhooks
    "user_action": "30/minute",   # placing calls, session reset
    "read": "200/minute",         # status, transcript, audio
}


def webhook_rate_limit() -> Callable:
    """Rate limit for Twilio webhooks."""
    return limiter.limit(RATE_LIMITS["webhook"])


def user_action_rate_limit() -> Callable:
    """Rate limit for user-initiated actions."""
    return limiter.limit(RATE_LIMITS["user_action"])


def read_rate_limit() -> Callable:
    """Rate limit for read operations."""
    return limiter.limit(RATE_LIMITS["read"])
