# backend/callflow/services/twilio_service.py
from __future__ import annotations

import asyncio
from typing import Any, Dict, Optional

from twilio.base.exceptions import TwilioRestException
from twilio.rest import Client

from callflow.config import settings
from callflow.services.exceptions import ConfigurationError, ProviderError
from callflow.utils.logger import logger


def _duration(value: Any) -> Optional[int]:
    try:
        return int(value) if value not in (None, "") else None
    except (TypeError, ValueError):
        return None


class TwilioService:
    """
    Twilio REST calls used by the orchestrator: originate, fetch status, hang up.

    The twilio client is synchronous; each request runs in a worker thread so
    webhook handling on the event loop is never blocked.
    """

    def __init__(self, client: Optional[Client] = None):
        self.account_sid = getattr(settings, "TWILIO_ACCOUNT_SID", None)
        self.auth_token = getattr(settings, "TWILIO_AUTH_TOKEN", None)
        self.from_number = getattr(settings, "TWILIO_PHONE_NUMBER", None)
        self._client = client

    def is_configured(self) -> bool:
        return bool(self.account_sid and self.auth_token and self.from_number)

    @property
    def client(self) -> Client:
        if self._client is None:
            if not (self.account_sid and self.auth_token):
                raise ConfigurationError("TWILIO_ACCOUNT_SID and TWILIO_AUTH_TOKEN are required")
            self._client = Client(self.account_sid, self.auth_token)
        return self._client

    async def create_call(self, to_number: str, url: str, status_callback: Optional[str] = None) -> str:
        """
        Originate an outbound call whose TwiML is fetched from `url`.

        Returns the CallSid.

        Raises:
            ConfigurationError: credentials or caller id missing (nothing is sent).
            ProviderError: Twilio rejected the request.
        """
        if not self.is_configured():
            raise ConfigurationError(
                "TWILIO_ACCOUNT_SID, TWILIO_AUTH_TOKEN, and TWILIO_PHONE_NUMBER are required"
            )
        if not to_number:
            raise ValueError("to_number is required")

        params: Dict[str, Any] = {
            "to": to_number,
            "from_": self.from_number,
            "url": url,
            "method": "POST",
            "timeout": int(getattr(settings, "CALL_RING_TIMEOUT", 25) or 25),
        }
        if status_callback:
            params["status_callback"] = status_callback
            params["status_callback_method"] = "POST"
            params["status_callback_event"] = ["initiated", "ringing", "answered", "completed"]

        logger.info(f"Twilio create_call -> to={to_number}, from={self.from_number}, twiml_url={url}")
        try:
            call = await asyncio.to_thread(self.client.calls.create, **params)
        except TwilioRestException as e:
            logger.error(f"TwilioRestException: {e.msg}")
            raise ProviderError(f"Twilio rejected the call: {e.msg}", provider="twilio", status_code=e.status) from e

        logger.info(f"Twilio call created: sid={call.sid}, status={call.status}")
        return call.sid

    async def fetch_call_status(self, call_sid: str) -> Dict[str, Any]:
        """Current status and duration (seconds, None until known) of a call."""
        if not (self.account_sid and self.auth_token):
            raise ConfigurationError("Twilio credentials not configured")
        try:
            call = await asyncio.to_thread(self.client.calls(call_sid).fetch)
        except TwilioRestException as e:
            logger.error(f"Twilio status fetch failed sid={call_sid}: {e.msg}")
            raise ProviderError(f"Failed to fetch status: {e.msg}", provider="twilio", status_code=e.status) from e

        logger.info(f"[call-status] sid={call_sid} status={call.status} duration={call.duration}")
        return {"status": call.status, "duration": _duration(call.duration)}

    async def end_call(self, call_sid: str) -> bool:
        """
        Terminate an active call by its SID.

        Returns True when the call is ended or already gone.
        """
        if not call_sid:
            logger.warning("Cannot end call: call_sid is empty")
            return False

        logger.info(f"Attempting to end call: {call_sid}")
        try:
            call = await asyncio.to_thread(self.client.calls(call_sid).update, status="completed")
        except TwilioRestException as e:
            # Call may already be completed or not found
            if e.code == 20404 or "not found" in str(e.msg).lower():
                logger.info(f"Call {call_sid} not found (may already be completed)")
                return True
            logger.error(f"TwilioRestException ending call {call_sid}: {e.msg}")
            return False

        logger.info(f"Call {call_sid} terminated. Final status: {call.status}")
        return True
