# backend/callflow/api/calls.py
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import Response
from pydantic import BaseModel

from callflow.agents.dialogue_policy import FALLBACK_REPLY
from callflow.agents.voice_agent import VoiceAgent
from callflow.config import settings
from callflow.dependencies import (
    get_audio_cache,
    get_call_monitor,
    get_classifier,
    get_placement_service,
    get_store,
    get_synthesizer,
    get_twilio,
    get_voice_agent,
)
from callflow.models.call import CallRequest
from callflow.services.audio_cache import AudioCache
from callflow.services.call_context_store import CallContextStore
from callflow.services.call_monitor import CallMonitor
from callflow.services.call_placement import CallPlacementService
from callflow.services.elevenlabs_service import ElevenLabsService
from callflow.services.exceptions import (
    CallInProgressError,
    ConfigurationError,
    InvalidCallRequest,
    ProviderError,
)
from callflow.services.transcript_classifier import TranscriptClassifier
from callflow.services.twilio_service import TwilioService
from callflow.utils.logger import logger
from callflow.utils.rate_limit import read_rate_limit, user_action_rate_limit, webhook_rate_limit
from callflow.utils.twilio_signature import verify_twilio_request

router = APIRouter(prefix="/api/calls", tags=["calls"])

TWIML_MEDIA_TYPE = "application/xml"
AUDIO_MEDIA_TYPE = "audio/mpeg"


class PlaceCallRequest(BaseModel):
    phoneNumber: Optional[str] = None
    companyName: Optional[str] = None
    address: Optional[str] = ""
    category: Optional[str] = ""
    website: Optional[str] = ""
    summary: Optional[str] = ""

    def to_call_request(self) -> CallRequest:
        return CallRequest(
            phone_number=self.phoneNumber or "",
            company_name=self.companyName or "",
            address=self.address or "",
            category=self.category or "",
            website=self.website or "",
            summary=self.summary or "",
        )


def _provider_http_error(e: Exception) -> HTTPException:
    if isinstance(e, ConfigurationError):
        return HTTPException(status_code=500, detail=str(e))
    return HTTPException(status_code=502, detail=str(e))


# ---------------------------
# Placement
# ---------------------------
@router.post("")
@user_action_rate_limit()
async def place_call(
    request: Request,
    body: PlaceCallRequest,
    placement: CallPlacementService = Depends(get_placement_service),
    monitor: CallMonitor = Depends(get_call_monitor),
):
    try:
        placed = await placement.place_call(body.to_call_request())
    except InvalidCallRequest as e:
        raise HTTPException(status_code=400, detail=str(e))
    except CallInProgressError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except (ConfigurationError, ProviderError) as e:
        logger.error(f"[caller] place call failed: {e}")
        raise _provider_http_error(e)

    if settings.AUTO_MONITOR_CALLS:
        monitor.start(placed.call_id)

    return placed.to_response()


# ---------------------------
# Twilio webhooks
# ---------------------------
@router.post("/handler", dependencies=[Depends(verify_twilio_request)])
@webhook_rate_limit()
async def call_handler(request: Request, agent: VoiceAgent = Depends(get_voice_agent)):
    """
    Twilio voice webhook: call connected, Gather result, or Redirect after silence.
    Always answers with TwiML so the call never dead-ends on our side.
    """
    form = await request.form()
    call_sid = str(form.get("CallSid") or "")
    speech = str(form.get("SpeechResult") or "")

    try:
        twiml = await agent.handle(call_sid, speech)
    except Exception as e:
        logger.error(f"[call/handler] webhook error for call_sid={call_sid}: {e}")
        twiml = agent.build_twiml(
            audio_url=None,
            text=FALLBACK_REPLY,
            prompt=agent.TURN_PROMPT,
            no_input=agent.TURN_NO_INPUT,
        )
    return Response(content=twiml, media_type=TWIML_MEDIA_TYPE)


@router.post("/handler/status", dependencies=[Depends(verify_twilio_request)])
@webhook_rate_limit()
async def call_status_callback(request: Request, store: CallContextStore = Depends(get_store)):
    form = await request.form()
    sid = str(form.get("CallSid") or "").strip()
    status = str(form.get("CallStatus") or "").strip()
    duration = form.get("CallDuration")

    logger.info(f"[call-status] callback sid={sid} status={status} duration={duration}")
    if not sid or store.get(sid) is None:
        return {"ok": False}

    store.mark_status(sid, status)
    return {"ok": True}


# ---------------------------
# Audio
# ---------------------------
@router.get("/audio")
@read_rate_limit()
async def call_audio(
    request: Request,
    id: Optional[str] = None,
    text: Optional[str] = None,
    audio_cache: AudioCache = Depends(get_audio_cache),
    synthesizer: ElevenLabsService = Depends(get_synthesizer),
):
    """Cached reply audio by id, or on-the-fly synthesis of `text` (opening script)."""
    if id:
        payload = audio_cache.get(id)
        if payload is not None:
            return Response(content=payload, media_type=AUDIO_MEDIA_TYPE)
        if not text:
            raise HTTPException(status_code=404, detail="Audio not found or expired")
        logger.info(f"[audio] id={id} missing from cache, synthesizing text instead")

    if not text:
        raise HTTPException(status_code=400, detail="Missing id or text")

    try:
        payload = await synthesizer.synthesize(text)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except (ConfigurationError, ProviderError) as e:
        logger.error(f"[audio] synthesis failed: {e}")
        raise _provider_http_error(e)

    return Response(content=payload, media_type=AUDIO_MEDIA_TYPE)


# ---------------------------
# Status & transcript
# ---------------------------
@router.get("/status")
@read_rate_limit()
async def call_status(
    request: Request,
    callSid: Optional[str] = None,
    twilio: TwilioService = Depends(get_twilio),
    store: CallContextStore = Depends(get_store),
):
    if not callSid:
        raise HTTPException(status_code=400, detail="callSid is required")

    try:
        info = await twilio.fetch_call_status(callSid)
    except (ConfigurationError, ProviderError) as e:
        raise _provider_http_error(e)

    store.mark_status(callSid, info.get("status") or "")
    return {"status": info.get("status"), "duration": info.get("duration")}


@router.get("/transcript")
@read_rate_limit()
async def call_transcript(
    request: Request,
    callSid: Optional[str] = None,
    live: bool = False,
    store: CallContextStore = Depends(get_store),
    classifier: TranscriptClassifier = Depends(get_classifier),
):
    """
    Transcript so far. `live=true` skips classification (call still running);
    otherwise the outcome is computed on demand and not stored.
    """
    if not callSid:
        raise HTTPException(status_code=400, detail="callSid is required")

    ctx = store.get(callSid)
    if ctx is None:
        return {"error": "Call context not found", "transcript": [], "classification": None}

    transcript = list(ctx.transcript)
    classification = None
    if not live:
        outcome = await classifier.classify(ctx.company_name, transcript)
        classification = outcome.value if outcome else None

    return {
        "transcript": [t.to_dict() for t in transcript],
        "classification": classification,
        "companyName": ctx.company_name,
        "status": ctx.status,
    }
