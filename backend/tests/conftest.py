# backend/tests/conftest.py
"""
Shared fixtures.

Environment is pinned before callflow is imported: settings are read once at
import time, and no test may reach a real provider.
"""
import os

os.environ["BASE_URL"] = "https://calls.example.test"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["AUTO_MONITOR_CALLS"] = "false"
os.environ["TWILIO_VALIDATE_SIGNATURE"] = "false"
os.environ["LOG_DIR"] = ""
for _name in (
    "TWILIO_ACCOUNT_SID",
    "TWILIO_AUTH_TOKEN",
    "TWILIO_PHONE_NUMBER",
    "TEST_PHONE_NUMBER",
    "ELEVENLABS_API_KEY",
    "ELEVENLABS_VOICE_ID",
    "OPENAI_API_KEY",
    "DIALOGUE_POLICY",
    "SINGLE_CALL_MODE",
):
    os.environ[_name] = ""

from typing import Any, Dict, List, Optional  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from callflow.agents.dialogue_policy import RuleBasedPolicy  # noqa: E402
from callflow.dependencies import (  # noqa: E402
    get_audio_cache,
    get_call_monitor,
    get_classifier,
    get_dialogue_policy,
    get_store,
    get_synthesizer,
    get_twilio,
)
from callflow.main import app  # noqa: E402
from callflow.services.audio_cache import AudioCache  # noqa: E402
from callflow.services.call_context_store import CallContextStore  # noqa: E402
from callflow.services.call_monitor import CallMonitor  # noqa: E402
from callflow.services.exceptions import ProviderError, SynthesisError  # noqa: E402
from callflow.services.transcript_classifier import TranscriptClassifier  # noqa: E402


# ============================================================================
# Fakes for the external providers
# ============================================================================

class FakeTwilio:
    """Stands in for TwilioService; records every call it is asked to place."""

    def __init__(self, configured: bool = True, sid: str = "CA0000000000000001"):
        self.configured = configured
        self.sid = sid
        self.created: List[Dict[str, Any]] = []
        self.statuses: List[Dict[str, Any]] = [{"status": "in-progress", "duration": None}]
        self.ended: List[str] = []
        self.create_error: Optional[Exception] = None
        self.status_error: Optional[Exception] = None

    def is_configured(self) -> bool:
        return self.configured

    async def create_call(self, to_number: str, url: str, status_callback: Optional[str] = None) -> str:
        if self.create_error is not None:
            raise self.create_error
        self.created.append({"to": to_number, "url": url, "status_callback": status_callback})
        return self.sid

    async def fetch_call_status(self, call_sid: str) -> Dict[str, Any]:
        if self.status_error is not None:
            raise self.status_error
        # last entry repeats once the list is exhausted
        if len(self.statuses) > 1:
            return self.statuses.pop(0)
        return self.statuses[0]

    async def end_call(self, call_sid: str) -> bool:
        self.ended.append(call_sid)
        return True


class FakeSynthesizer:
    """Stands in for ElevenLabsService; audio bytes embed the spoken text."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.calls: List[str] = []

    async def synthesize(self, text: str) -> bytes:
        self.calls.append(text)
        if self.fail:
            raise SynthesisError("ElevenLabs API error: quota exceeded", status_code=401, body="quota exceeded")
        return b"ID3" + text.encode("utf-8")

    async def aclose(self) -> None:
        return None


class FakeLLM:
    """Stands in for OpenAIService.generate_completion."""

    def __init__(self, reply: str = "", error: Optional[Exception] = None):
        self.reply = reply
        self.error = error
        self.prompts: List[str] = []

    async def generate_completion(self, prompt: str, **kwargs) -> str:
        self.prompts.append(prompt)
        if self.error is not None:
            raise self.error
        return self.reply


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def store() -> CallContextStore:
    return CallContextStore()


@pytest.fixture
def audio_cache() -> AudioCache:
    return AudioCache(ttl_seconds=60)


@pytest.fixture
def fake_twilio() -> FakeTwilio:
    return FakeTwilio()


@pytest.fixture
def fake_synth() -> FakeSynthesizer:
    return FakeSynthesizer()


@pytest.fixture
def fake_llm() -> FakeLLM:
    return FakeLLM(reply="interested")


@pytest.fixture
def api(store, audio_cache, fake_twilio, fake_synth, fake_llm):
    """
    TestClient wired to fresh in-memory stores and fake providers.

    Yields a dict so tests can reach the fakes behind the HTTP surface.
    """
    classifier = TranscriptClassifier(llm=fake_llm)
    monitor = CallMonitor(store=store, twilio=fake_twilio, classifier=classifier, poll_interval=0, timeout=1)

    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_audio_cache] = lambda: audio_cache
    app.dependency_overrides[get_twilio] = lambda: fake_twilio
    app.dependency_overrides[get_synthesizer] = lambda: fake_synth
    app.dependency_overrides[get_dialogue_policy] = lambda: RuleBasedPolicy()
    app.dependency_overrides[get_classifier] = lambda: classifier
    app.dependency_overrides[get_call_monitor] = lambda: monitor

    yield {
        "client": TestClient(app),
        "store": store,
        "audio_cache": audio_cache,
        "twilio": fake_twilio,
        "synth": fake_synth,
        "llm": fake_llm,
    }

    app.dependency_overrides.clear()


@pytest.fixture
def provider_error() -> ProviderError:
    return ProviderError("Twilio rejected the call: invalid number", provider="twilio", status_code=400)
