# backend/callflow/services/elevenlabs_service.py
from __future__ import annotations

import time
from typing import Any, Dict, Optional

import httpx

from callflow.config import settings
from callflow.services.exceptions import ConfigurationError, SynthesisError
from callflow.utils.logger import logger
from callflow.utils.retry import RetryError, check_rate_limit_response, synthesis_retry

VOICE_SETTINGS: Dict[str, Any] = {
    "stability": 0.4,
    "similarity_boost": 0.75,
    "style": 0.3,
    "use_speaker_boost": True,
}


class ElevenLabsService:
    """
    Text-to-speech through the ElevenLabs REST API.

    Returns raw MP3 bytes; callers decide whether to cache them (webhook turns)
    or stream them straight back (opening line fallback).
    """

    def __init__(self, http: Optional[httpx.AsyncClient] = None):
        self.api_key = (getattr(settings, "ELEVENLABS_API_KEY", "") or "").strip()
        self.voice_id = (getattr(settings, "ELEVENLABS_VOICE_ID", "") or "").strip()
        self.model_id = (getattr(settings, "ELEVENLABS_MODEL_ID", "") or "eleven_turbo_v2_5").strip()

        self.base_url = "https://api.elevenlabs.io"
        self._http = http or httpx.AsyncClient(timeout=getattr(settings, "ELEVENLABS_TIMEOUT_SECONDS", 25))

        if not self.api_key:
            logger.warning("ELEVENLABS_API_KEY is missing")
        if not self.voice_id:
            logger.warning("ELEVENLABS_VOICE_ID is missing")

    def is_configured(self) -> bool:
        return bool(self.api_key and self.voice_id)

    async def synthesize(self, text: str) -> bytes:
        """
        Synthesize `text` to MP3 bytes.

        Raises:
            ConfigurationError: API key or voice id missing (no request is made).
            SynthesisError: provider returned a non-success response; `body` has its raw error.
        """
        if not self.is_configured():
            raise ConfigurationError("ELEVENLABS_API_KEY and ELEVENLABS_VOICE_ID are required")

        text = (text or "").strip()
        if not text:
            raise ValueError("TTS text is empty")

        url = f"{self.base_url}/v1/text-to-speech/{self.voice_id}"
        headers = {
            "Accept": "audio/mpeg",
            "Content-Type": "application/json",
            "xi-api-key": self.api_key,
        }
        payload = {
            "text": text,
            "model_id": self.model_id,
            "voice_settings": VOICE_SETTINGS,
        }

        @synthesis_retry()
        async def _post() -> httpx.Response:
            resp = await self._http.post(url, headers=headers, json=payload)
            check_rate_limit_response(resp)
            return resp

        started = time.time()
        try:
            resp = await _post()
        except RetryError as e:
            raise SynthesisError(f"ElevenLabs API unreachable: {e.last_exception}") from e

        elapsed = (time.time() - started) * 1000
        if resp.status_code >= 400:
            body = resp.text
            logger.error(f"ElevenLabs TTS error {resp.status_code} after {elapsed:.0f}ms: {body[:500]}")
            raise SynthesisError(
                f"ElevenLabs API error: {body}",
                status_code=resp.status_code,
                body=body,
            )

        audio = resp.content
        logger.info(f"[LATENCY] ElevenLabs TTS: {elapsed:.2f}ms ({len(text)} chars -> {len(audio)} bytes)")
        return audio

    async def aclose(self) -> None:
        await self._http.aclose()
