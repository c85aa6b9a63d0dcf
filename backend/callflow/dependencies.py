# backend/callflow/dependencies.py
"""
Process-wide service instances, exposed as FastAPI dependencies.

Tests swap any of them with app.dependency_overrides[...].
"""
from functools import lru_cache

from fastapi import Depends

from callflow.agents.dialogue_policy import DialoguePolicy, build_dialogue_policy
from callflow.agents.voice_agent import VoiceAgent
from callflow.config import settings
from callflow.services.audio_cache import AudioCache
from callflow.services.call_context_store import CallContextStore
from callflow.services.call_monitor import CallMonitor
from callflow.services.call_placement import CallPlacementService
from callflow.services.elevenlabs_service import ElevenLabsService
from callflow.services.openai_service import OpenAIService
from callflow.services.transcript_classifier import TranscriptClassifier
from callflow.services.twilio_service import TwilioService


@lru_cache(maxsize=None)
def get_store() -> CallContextStore:
    return CallContextStore()


@lru_cache(maxsize=None)
def get_audio_cache() -> AudioCache:
    return AudioCache(ttl_seconds=settings.AUDIO_CACHE_TTL_SECONDS)


@lru_cache(maxsize=None)
def get_twilio() -> TwilioService:
    return TwilioService()


@lru_cache(maxsize=None)
def get_synthesizer() -> ElevenLabsService:
    return ElevenLabsService()


@lru_cache(maxsize=None)
def get_llm() -> OpenAIService:
    return OpenAIService()


@lru_cache(maxsize=None)
def get_dialogue_policy() -> DialoguePolicy:
    return build_dialogue_policy(llm=get_llm())


@lru_cache(maxsize=None)
def get_classifier() -> TranscriptClassifier:
    return TranscriptClassifier(llm=get_llm())


@lru_cache(maxsize=None)
def get_call_monitor() -> CallMonitor:
    return CallMonitor(store=get_store(), twilio=get_twilio(), classifier=get_classifier())


def get_voice_agent(
    store: CallContextStore = Depends(get_store),
    audio_cache: AudioCache = Depends(get_audio_cache),
    synthesizer: ElevenLabsService = Depends(get_synthesizer),
    policy: DialoguePolicy = Depends(get_dialogue_policy),
) -> VoiceAgent:
    return VoiceAgent(store=store, audio_cache=audio_cache, synthesizer=synthesizer, policy=policy)


def get_placement_service(
    store: CallContextStore = Depends(get_store),
    twilio: TwilioService = Depends(get_twilio),
) -> CallPlacementService:
    return CallPlacementService(store=store, twilio=twilio)
