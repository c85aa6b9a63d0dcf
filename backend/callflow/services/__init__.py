from callflow.services.audio_cache import AudioCache
from callflow.services.call_context_store import CallContextStore
from callflow.services.call_monitor import CallMonitor
from callflow.services.call_placement import CallPlacementService
from callflow.services.elevenlabs_service import ElevenLabsService
from callflow.services.openai_service import OpenAIService
from callflow.services.transcript_classifier import TranscriptClassifier
from callflow.services.twilio_service import TwilioService

__all__ = [
    'AudioCache',
    'CallContextStore',
    'CallMonitor',
    'CallPlacementService',
    'ElevenLabsService',
    'OpenAIService',
    'TranscriptClassifier',
    'TwilioService'
]
