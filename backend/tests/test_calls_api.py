# backend/tests/test_calls_api.py
"""
Call placement, status, transcript, audio and session endpoints.
"""
import pytest

from callflow.config import settings
from callflow.models.call import CallContext, Turn, TurnRole
from callflow.services.exceptions import ProviderError
from callflow.services.script_generator import DEFAULT_SCRIPT, generate_script

BASE = "https://calls.example.test"

PIZZA = {
    "phoneNumber": "(555) 123-4567",
    "companyName": "Joe's Pizza",
    "category": "Restaurant",
    "address": "12 Main St, Austin",
}


def _seed(store, sid: str, turns=("Hi, I'm calling Acme.",), status: str = "in-progress") -> CallContext:
    transcript = [
        Turn(TurnRole.AGENT if i % 2 == 0 else TurnRole.COUNTERPARTY, text) for i, text in enumerate(turns)
    ]
    ctx = CallContext(company_name="Acme", script=turns[0], transcript=transcript, status=status)
    store.create(sid, ctx)
    return ctx


# ============================================================================
# 1. PLACEMENT
# ============================================================================

class TestPlaceCall:

    def test_place_call(self, api):
        response = api["client"].post("/api/calls", json=PIZZA)
        assert response.status_code == 200
        assert response.json() == {
            "success": True,
            "callId": "CA0000000000000001",
            "normalizedNumber": "+15551234567",
            "companyName": "Joe's Pizza",
            "testMode": False,
        }

        created = api["twilio"].created[0]
        assert created["to"] == "+15551234567"
        assert created["url"] == f"{BASE}/api/calls/handler"
        assert created["status_callback"] == f"{BASE}/api/calls/handler/status"

        ctx = api["store"].get("CA0000000000000001")
        script = generate_script("Joe's Pizza", "Restaurant", "12 Main St, Austin")
        assert ctx.script == script
        assert ctx.transcript == [Turn(TurnRole.AGENT, script)]

    def test_webhook_before_store_keeps_business_details(self, api):
        # Twilio's first webhook beat the placement; the handler made a default context
        api["store"].get_or_create_default("CA0000000000000001", DEFAULT_SCRIPT)

        response = api["client"].post("/api/calls", json=PIZZA)
        assert response.status_code == 200

        ctx = api["store"].get("CA0000000000000001")
        assert ctx.company_name == "Joe's Pizza"
        assert ctx.category == "Restaurant"
        assert ctx.requested_number == "+15551234567"
        assert ctx.is_default is False
        assert ctx.transcript == [Turn(TurnRole.AGENT, DEFAULT_SCRIPT)]

        transcript = api["client"].get(
            "/api/calls/transcript", params={"callSid": "CA0000000000000001", "live": "true"}
        )
        assert transcript.json()["companyName"] == "Joe's Pizza"

    def test_test_mode_redirects_dial(self, api, monkeypatch):
        monkeypatch.setattr(settings, "TEST_PHONE_NUMBER", "+15550001111")

        response = api["client"].post("/api/calls", json=PIZZA)
        assert response.status_code == 200
        body = response.json()
        assert body["normalizedNumber"] == "+15550001111"
        assert body["testMode"] is True
        assert api["twilio"].created[0]["to"] == "+15550001111"

        ctx = api["store"].get(body["callId"])
        assert ctx.requested_number == "+15551234567"
        assert ctx.dialed_number == "+15550001111"
        # personalization still uses the real business
        assert "Joe's Pizza" in ctx.script

    @pytest.mark.parametrize("payload", [
        {},
        {"companyName": "Acme"},
        {"phoneNumber": "5551234567"},
        {"phoneNumber": "   ", "companyName": "Acme"},
    ])
    def test_missing_fields(self, api, payload):
        response = api["client"].post("/api/calls", json=payload)
        assert response.status_code == 400
        assert api["twilio"].created == []
        assert len(api["store"]) == 0

    def test_undialable_number(self, api):
        response = api["client"].post("/api/calls", json={"phoneNumber": "12", "companyName": "Acme"})
        assert response.status_code == 400

    def test_missing_credentials_stores_nothing(self, api):
        api["twilio"].configured = False
        response = api["client"].post("/api/calls", json=PIZZA)
        assert response.status_code == 500
        assert api["twilio"].created == []
        assert len(api["store"]) == 0

    def test_provider_rejection_stores_nothing(self, api, provider_error):
        api["twilio"].create_error = provider_error
        response = api["client"].post("/api/calls", json=PIZZA)
        assert response.status_code == 502
        assert "invalid number" in response.json()["detail"]
        assert len(api["store"]) == 0

    def test_single_call_mode_rejects_second_call(self, api, monkeypatch):
        monkeypatch.setattr(settings, "SINGLE_CALL_MODE", True)
        _seed(api["store"], "CA-busy")

        response = api["client"].post("/api/calls", json=PIZZA)
        assert response.status_code == 409
        assert "CA-busy" in response.json()["detail"]
        assert api["twilio"].created == []

    def test_single_call_mode_allows_after_completion(self, api, monkeypatch):
        monkeypatch.setattr(settings, "SINGLE_CALL_MODE", True)
        _seed(api["store"], "CA-done", status="completed")

        response = api["client"].post("/api/calls", json=PIZZA)
        assert response.status_code == 200


# ============================================================================
# 2. STATUS & TRANSCRIPT
# ============================================================================

class TestCallStatus:

    def test_status(self, api):
        api["twilio"].statuses = [{"status": "completed", "duration": 37}]
        _seed(api["store"], "CA1")

        response = api["client"].get("/api/calls/status", params={"callSid": "CA1"})
        assert response.status_code == 200
        assert response.json() == {"status": "completed", "duration": 37}
        assert api["store"].get("CA1").status == "completed"

    def test_status_requires_sid(self, api):
        assert api["client"].get("/api/calls/status").status_code == 400

    def test_status_provider_error(self, api):
        api["twilio"].status_error = ProviderError("Failed to fetch status: not found", provider="twilio")
        response = api["client"].get("/api/calls/status", params={"callSid": "CA1"})
        assert response.status_code == 502


class TestTranscript:

    def test_unknown_call(self, api):
        response = api["client"].get("/api/calls/transcript", params={"callSid": "CA-nope"})
        assert response.status_code == 200
        assert response.json() == {"error": "Call context not found", "transcript": [], "classification": None}

    def test_live_skips_classification(self, api):
        _seed(api["store"], "CA1", turns=("Hi!", "Sure", "Great!"))
        response = api["client"].get("/api/calls/transcript", params={"callSid": "CA1", "live": "true"})
        body = response.json()
        assert body["classification"] is None
        assert body["companyName"] == "Acme"
        assert body["transcript"] == [
            {"role": "agent", "text": "Hi!"},
            {"role": "counterparty", "text": "Sure"},
            {"role": "agent", "text": "Great!"},
        ]
        assert api["llm"].prompts == []

    def test_final_transcript_is_classified(self, api):
        _seed(api["store"], "CA1", turns=("Hi!", "Sure, let's talk", "Great!"))
        response = api["client"].get("/api/calls/transcript", params={"callSid": "CA1"})
        assert response.json()["classification"] == "interested"

    def test_model_garbage_is_unreachable(self, api):
        api["llm"].reply = "I think they liked it"
        _seed(api["store"], "CA1", turns=("Hi!", "hmm"))
        response = api["client"].get("/api/calls/transcript", params={"callSid": "CA1"})
        assert response.json()["classification"] == "unreachable"

    def test_opening_only_is_not_classified(self, api):
        _seed(api["store"], "CA1")
        response = api["client"].get("/api/calls/transcript", params={"callSid": "CA1"})
        assert response.json()["classification"] is None
        assert api["llm"].prompts == []


# ============================================================================
# 3. AUDIO
# ============================================================================

class TestAudioEndpoint:

    def test_requires_id_or_text(self, api):
        assert api["client"].get("/api/calls/audio").status_code == 400

    def test_cached_id(self, api):
        audio_id = api["audio_cache"].put(b"ID3cached")
        response = api["client"].get("/api/calls/audio", params={"id": audio_id})
        assert response.status_code == 200
        assert response.content == b"ID3cached"
        assert api["synth"].calls == []

    def test_unknown_id_only_is_404(self, api):
        assert api["client"].get("/api/calls/audio", params={"id": "deadbeef"}).status_code == 404

    def test_unknown_id_falls_back_to_text(self, api):
        response = api["client"].get("/api/calls/audio", params={"id": "deadbeef", "text": "Hi there"})
        assert response.status_code == 200
        assert response.content == b"ID3Hi there"

    def test_text_is_synthesized(self, api):
        response = api["client"].get("/api/calls/audio", params={"text": "Hi, I'm calling Acme."})
        assert response.status_code == 200
        assert response.headers["content-type"] == "audio/mpeg"
        assert api["synth"].calls == ["Hi, I'm calling Acme."]

    def test_synthesis_failure_is_502(self, api):
        api["synth"].fail = True
        response = api["client"].get("/api/calls/audio", params={"text": "Hi"})
        assert response.status_code == 502
        assert "quota exceeded" in response.json()["detail"]


# ============================================================================
# 4. SESSION & HEALTH
# ============================================================================

class TestSession:

    def test_idle(self, api):
        assert api["client"].get("/api/session").json() == {"active": False, "callIds": []}

    def test_active(self, api):
        _seed(api["store"], "CA1")
        _seed(api["store"], "CA2", status="completed")
        assert api["client"].get("/api/session").json() == {"active": True, "callIds": ["CA1"]}

    def test_reset_ends_in_flight_calls(self, api):
        _seed(api["store"], "CA1")
        response = api["client"].post("/api/session/reset")
        assert response.status_code == 200
        assert response.json() == {"success": True, "ended": ["CA1"], "failed": []}
        assert api["twilio"].ended == ["CA1"]
        assert api["store"].get("CA1").status == "canceled"
        assert api["client"].get("/api/session").json()["active"] is False


class TestHealthCheckEndpoints:

    def test_health_simple(self, api):
        response = api["client"].get("/health/simple")
        assert response.status_code == 200
        assert response.json() == {"status": "ok"}

    def test_health_reports_config(self, api):
        body = api["client"].get("/health").json()
        # no provider credentials in the test environment
        assert body["status"] == "degraded"
        assert body["checks"]["config"]["twilio_configured"] is False
        assert "audio_cache" in body["checks"]
        assert "calls_in_flight" in body["checks"]
