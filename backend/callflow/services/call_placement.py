# backend/callflow/services/call_placement.py
from __future__ import annotations

from typing import Optional

from callflow.config import settings
from callflow.models.call import CallContext, CallRequest, CallStatus, PlacedCall, Turn, TurnRole
from callflow.services.call_context_store import CallContextStore
from callflow.services.exceptions import CallInProgressError, ConfigurationError, InvalidCallRequest
from callflow.services.script_generator import generate_script
from callflow.services.twilio_service import TwilioService
from callflow.utils.logger import logger
from callflow.utils.validators import clean_text, validate_phone_number

HANDLER_PATH = "/api/calls/handler"
STATUS_CALLBACK_PATH = "/api/calls/handler/status"


def webhook_url(path: str = HANDLER_PATH, base_url: Optional[str] = None) -> str:
    base = (base_url if base_url is not None else getattr(settings, "BASE_URL", "")) or ""
    return base.rstrip("/") + path


class CallPlacementService:
    """
    Places one outbound call.

    Order matters: the context is only stored once Twilio has returned a
    CallSid, so a rejected call never leaves a dangling context behind. If the
    webhook got there first, its default context takes the business details.
    """

    def __init__(
        self,
        store: CallContextStore,
        twilio: Optional[TwilioService] = None,
        test_phone_number: Optional[str] = None,
        single_call_mode: Optional[bool] = None,
    ):
        self.store = store
        self.twilio = twilio or TwilioService()
        self.test_phone_number = (
            test_phone_number if test_phone_number is not None
            else getattr(settings, "TEST_PHONE_NUMBER", None)
        ) or ""
        self.single_call_mode = (
            single_call_mode if single_call_mode is not None
            else bool(getattr(settings, "SINGLE_CALL_MODE", False))
        )
        self.default_country_code = getattr(settings, "DEFAULT_COUNTRY_CODE", "1") or "1"

    @property
    def test_mode(self) -> bool:
        return bool(self.test_phone_number.strip())

    def _validate(self, request: CallRequest) -> CallRequest:
        phone = clean_text(request.phone_number, 64)
        company = clean_text(request.company_name, 200)
        if not phone or not company:
            raise InvalidCallRequest("phoneNumber and companyName are required")
        return CallRequest(
            phone_number=phone,
            company_name=company,
            address=clean_text(request.address, 500),
            category=clean_text(request.category, 200),
            website=clean_text(request.website, 500),
            summary=clean_text(request.summary),
        )

    async def place_call(self, request: CallRequest) -> PlacedCall:
        """
        Validate, normalize, dial and register the call context.

        Raises:
            InvalidCallRequest: missing phone number / company name or unusable number.
            ConfigurationError: Twilio credentials missing.
            CallInProgressError: single-call mode and another call is in flight.
            ProviderError: Twilio rejected the call.
        """
        request = self._validate(request)

        if not self.twilio.is_configured():
            raise ConfigurationError(
                "TWILIO_ACCOUNT_SID, TWILIO_AUTH_TOKEN, and TWILIO_PHONE_NUMBER are required"
            )

        if self.single_call_mode:
            active = self.store.in_flight()
            if active:
                raise CallInProgressError(active)

        ok, requested_number, error = validate_phone_number(request.phone_number, self.default_country_code)
        if not ok:
            raise InvalidCallRequest(error or "Invalid phone number")

        to_number = requested_number
        if self.test_mode:
            ok, to_number, error = validate_phone_number(self.test_phone_number, self.default_country_code)
            if not ok:
                raise ConfigurationError(f"TEST_PHONE_NUMBER is invalid: {error}")
            logger.info(f"[caller] test mode: redirecting call for {requested_number} to {to_number}")

        script = generate_script(request.company_name, request.category, request.address)
        context = CallContext(
            company_name=request.company_name,
            category=request.category,
            address=request.address,
            summary=request.summary,
            website=request.website,
            script=script,
            transcript=[Turn(TurnRole.AGENT, script)],
            requested_number=requested_number,
            dialed_number=to_number,
            status=CallStatus.QUEUED.value,
        )

        logger.info(
            f"[caller] calling {request.company_name!r} at {to_number} "
            f"(requested={requested_number}), webhook={webhook_url()}"
        )
        call_sid = await self.twilio.create_call(
            to_number,
            url=webhook_url(HANDLER_PATH),
            status_callback=webhook_url(STATUS_CALLBACK_PATH),
        )

        if not self.store.create(call_sid, context):
            # Twilio reached the webhook before we stored; that request built a default context.
            if not await self.store.attach_placement(call_sid, context):
                logger.warning(f"[caller] context for sid={call_sid} already existed; keeping it")

        logger.info(f"[caller] call created, sid={call_sid}")
        return PlacedCall(
            call_id=call_sid,
            normalized_number=to_number,
            company_name=request.company_name,
            test_mode=self.test_mode,
            requested_number=requested_number,
        )
