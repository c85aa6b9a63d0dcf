# backend/callflow/agents/voice_agent.py
"""
Twilio voice webhook state machine.

Twilio POSTs the handler once when the call connects and once per Gather
result afterwards. Each request is answered with TwiML and is in one of two
states, decided only by the request payload:

    OPENING     no speech in this request (call just connected, or the last
                Gather timed out and <Redirect> looped back here)
                -> play the opening script, listen
    RESPONDING  SpeechResult is non-blank
                -> record it, ask the dialogue policy for a reply, record the
                   reply, synthesize + cache it, play it, listen

Both states end with Gather -> Say -> Redirect(self), so a silent line loops
back into OPENING instead of dead-ending. There is no turn limit; the call
ends when the far side hangs up.
"""
from __future__ import annotations

import time
from enum import Enum
from typing import Optional
from urllib.parse import quote

from twilio.twiml.voice_response import Gather, VoiceResponse

from callflow.agents.dialogue_policy import FALLBACK_REPLY, DialoguePolicy
from callflow.config import settings
from callflow.models.call import CallContext, Turn, TurnRole
from callflow.services.audio_cache import AudioCache
from callflow.services.call_context_store import CallContextStore
from callflow.services.call_placement import HANDLER_PATH, webhook_url
from callflow.services.elevenlabs_service import ElevenLabsService
from callflow.services.exceptions import ConfigurationError, ProviderError
from callflow.services.script_generator import DEFAULT_SCRIPT
from callflow.utils.logger import logger

AUDIO_PATH = "/api/calls/audio"


class WebhookState(str, Enum):
    OPENING = "opening"
    RESPONDING = "responding"


def resolve_state(speech_result: Optional[str]) -> WebhookState:
    return WebhookState.RESPONDING if (speech_result or "").strip() else WebhookState.OPENING


class VoiceAgent:
    OPENING_PROMPT = "Please respond now."
    OPENING_NO_INPUT = "I didn't hear anything. Let me try again."
    TURN_PROMPT = "Please respond."
    TURN_NO_INPUT = "Let me know if you have any other questions."

    def __init__(
        self,
        store: CallContextStore,
        audio_cache: AudioCache,
        synthesizer: ElevenLabsService,
        policy: DialoguePolicy,
        base_url: Optional[str] = None,
    ):
        self.store = store
        self.audio_cache = audio_cache
        self.synthesizer = synthesizer
        self.policy = policy
        self.base_url = (base_url if base_url is not None else getattr(settings, "BASE_URL", "")).rstrip("/")

        self.gather_timeout = int(getattr(settings, "GATHER_TIMEOUT_SECONDS", 15) or 15)
        self.language = getattr(settings, "GATHER_LANGUAGE", "en-US") or "en-US"
        self.say_voice = getattr(settings, "TWILIO_SAY_VOICE", "alice") or "alice"

    # -----------------------------
    # URLs
    # -----------------------------
    @property
    def handler_url(self) -> str:
        return webhook_url(HANDLER_PATH, self.base_url)

    def audio_url_for_text(self, text: str) -> str:
        return f"{self.base_url}{AUDIO_PATH}?text={quote(text, safe='')}"

    def audio_url_for_id(self, audio_id: str) -> str:
        return f"{self.base_url}{AUDIO_PATH}?id={audio_id}"

    # -----------------------------
    # Entry point
    # -----------------------------
    async def handle(self, call_sid: str, speech_result: Optional[str]) -> str:
        call_sid = (call_sid or "").strip()
        state = resolve_state(speech_result)
        logger.info(f"[call/handler] call_sid={call_sid} state={state.value} speech={(speech_result or '')[:80]!r}")

        if state == WebhookState.OPENING:
            return self._opening(call_sid)
        return await self._responding(call_sid, (speech_result or "").strip())

    # -----------------------------
    # OPENING
    # -----------------------------
    def _context_for(self, call_sid: str) -> CallContext:
        if not call_sid:
            # Nothing to key on; answer generically without storing anything.
            return CallContext(script=DEFAULT_SCRIPT, transcript=[Turn(TurnRole.AGENT, DEFAULT_SCRIPT)], is_default=True)
        return self.store.get(call_sid) or self.store.get_or_create_default(call_sid, DEFAULT_SCRIPT)

    def _opening(self, call_sid: str) -> str:
        context = self._context_for(call_sid)
        script = context.script or DEFAULT_SCRIPT
        logger.info(
            f"[call/handler] playing opening script ({len(script)} chars) "
            f"company={context.company_name!r} default={context.is_default}"
        )
        return self.build_twiml(
            audio_url=self.audio_url_for_text(script),
            text=script,
            prompt=self.OPENING_PROMPT,
            no_input=self.OPENING_NO_INPUT,
        )

    # -----------------------------
    # RESPONDING
    # -----------------------------
    async def _next_turn(self, utterance: str, context: CallContext) -> str:
        try:
            reply = await self.policy.next_turn(utterance, context)
        except Exception as e:
            # A dialogue failure must never end the call.
            logger.error(f"[call/handler] dialogue policy error: {e}")
            return FALLBACK_REPLY
        return (reply or "").strip() or FALLBACK_REPLY

    async def _responding(self, call_sid: str, utterance: str) -> str:
        turn_start = time.time()

        if not call_sid:
            reply = await self._next_turn(utterance, self._context_for(call_sid))
        else:
            self._context_for(call_sid)  # stale sid -> default context
            exchange = await self.store.begin_exchange(call_sid, utterance)
            if exchange.owner:
                reply = FALLBACK_REPLY
                try:
                    reply = await self._next_turn(utterance, exchange.context)
                finally:
                    await self.store.complete_exchange(call_sid, reply)
            else:
                reply = await exchange.wait()

        logger.info(f"[call/handler] user said: {utterance[:80]!r} -> responding: {reply[:80]!r}")

        audio_id = await self.speak(reply)
        twiml = self.build_twiml(
            audio_url=self.audio_url_for_id(audio_id) if audio_id else None,
            text=reply,
            prompt=self.TURN_PROMPT,
            no_input=self.TURN_NO_INPUT,
        )

        elapsed = (time.time() - turn_start) * 1000
        logger.info(f"[TELEMETRY] Turn complete in {elapsed:.2f}ms | audio_cache={self.audio_cache.get_stats()}")
        return twiml

    async def speak(self, text: str) -> Optional[str]:
        """Synthesize once and cache; returns the audio id, or None if synthesis failed."""
        try:
            audio = await self.synthesizer.synthesize(text)
        except (ConfigurationError, ProviderError, ValueError) as e:
            logger.error(f"[call/handler] synthesis failed, falling back to <Say>: {e}")
            return None
        return self.audio_cache.put(audio)

    # -----------------------------
    # TwiML
    # -----------------------------
    def build_twiml(self, *, audio_url: Optional[str], text: str, prompt: str, no_input: str) -> str:
        vr = VoiceResponse()
        if audio_url:
            vr.play(audio_url)
        else:
            vr.say(text, voice=self.say_voice)

        gather = Gather(
            input="speech",
            action=self.handler_url,
            method="POST",
            speech_timeout="auto",
            language=self.language,
            timeout=self.gather_timeout,
        )
        gather.say(prompt, voice=self.say_voice)
        vr.append(gather)

        vr.say(no_input)
        vr.redirect(self.handler_url, method="POST")
        return str(vr)
