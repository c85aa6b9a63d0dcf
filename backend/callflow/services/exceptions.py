# backend/callflow/services/exceptions.py
"""
Error taxonomy for the call orchestration services.

ConfigurationError lives in callflow.config (it is raised before any provider
is contacted) and is re-exported here so callers can import everything from
one place.
"""
from typing import Optional

from callflow.config import ConfigurationError


class ProviderError(Exception):
    """An external service (Twilio, ElevenLabs, OpenAI) rejected a request."""

    def __init__(self, message: str, provider: str = "", status_code: Optional[int] = None, body: str = ""):
        super().__init__(message)
        self.provider = provider
        self.status_code = status_code
        self.body = body


class SynthesisError(ProviderError):
    """Speech synthesis failed; `body` holds the raw provider error text."""

    def __init__(self, message: str, status_code: Optional[int] = None, body: str = ""):
        super().__init__(message, provider="elevenlabs", status_code=status_code, body=body)


class InvalidCallRequest(ValueError):
    """Call placement request is missing required fields."""


class CallInProgressError(Exception):
    """Single-call mode is on and another call is still in flight."""

    def __init__(self, call_ids):
        super().__init__(f"A call is already in progress: {', '.join(call_ids)}")
        self.call_ids = list(call_ids)


class TurnOrderError(ValueError):
    """Appending a turn would break agent/counterparty alternation."""


__all__ = [
    "ConfigurationError",
    "ProviderError",
    "SynthesisError",
    "InvalidCallRequest",
    "CallInProgressError",
    "TurnOrderError",
]
