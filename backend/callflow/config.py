# backend/callflow/config.py
import os
from pathlib import Path
from dotenv import load_dotenv

BACKEND_DIR = Path(__file__).resolve().parents[1]   # backend/
REPO_DIR = BACKEND_DIR.parent                        # repo root

ENV_BACKEND = BACKEND_DIR / ".env"
ENV_REPO = REPO_DIR / ".env"
ENV_FILE = ENV_BACKEND if ENV_BACKEND.exists() else ENV_REPO

load_dotenv(dotenv_path=str(ENV_FILE), override=False)


def _parse_origins(raw: str) -> list[str]:
    # split, strip, drop empties, drop trailing slashes
    out = []
    for o in (raw or "").split(","):
        o = (o or "").strip().rstrip("/")
        if o:
            out.append(o)
    return out


def _env_bool(name: str, default: str = "false") -> bool:
    return (os.getenv(name, default) or "").strip().lower() in ("1", "true", "yes", "on")


class Settings:
    # ================= Public URL =================
    # Base URL Twilio uses to reach the webhook and audio endpoints (must be public HTTPS in prod)
    BASE_URL: str = (os.getenv("BASE_URL", "http://localhost:8000") or "").strip().rstrip("/")

    # ================= Twilio Configuration =================
    TWILIO_ACCOUNT_SID: str | None = os.getenv("TWILIO_ACCOUNT_SID")
    TWILIO_AUTH_TOKEN: str | None = os.getenv("TWILIO_AUTH_TOKEN")
    TWILIO_PHONE_NUMBER: str | None = os.getenv("TWILIO_PHONE_NUMBER")

    # When set, every outbound call is redirected to this number (safe end-to-end testing)
    TEST_PHONE_NUMBER: str | None = os.getenv("TEST_PHONE_NUMBER")

    TWILIO_VALIDATE_SIGNATURE: bool = _env_bool("TWILIO_VALIDATE_SIGNATURE")
    TWILIO_SAY_VOICE: str = os.getenv("TWILIO_SAY_VOICE", "alice")
    CALL_RING_TIMEOUT: int = int(os.getenv("CALL_RING_TIMEOUT", "25"))
    DEFAULT_COUNTRY_CODE: str = os.getenv("DEFAULT_COUNTRY_CODE", "1")

    # Speech collection window
    GATHER_TIMEOUT_SECONDS: int = int(os.getenv("GATHER_TIMEOUT_SECONDS", "15"))
    GATHER_LANGUAGE: str = os.getenv("GATHER_LANGUAGE", "en-US")

    # ================= ElevenLabs Configuration =================
    ELEVENLABS_API_KEY: str | None = os.getenv("ELEVENLABS_API_KEY")
    ELEVENLABS_VOICE_ID: str | None = os.getenv("ELEVENLABS_VOICE_ID")
    ELEVENLABS_MODEL_ID: str = os.getenv("ELEVENLABS_MODEL_ID", "eleven_turbo_v2_5")
    ELEVENLABS_TIMEOUT_SECONDS: float = float(os.getenv("ELEVENLABS_TIMEOUT_SECONDS", "25"))

    # ================= OpenAI Configuration =================
    OPENAI_API_KEY: str | None = os.getenv("OPENAI_API_KEY")
    OPENAI_MODEL: str = os.getenv("OPENAI_MODEL", "gpt-4o-mini")
    OPENAI_TIMEOUT_SECONDS: float = float(os.getenv("OPENAI_TIMEOUT_SECONDS", "8.0"))

    # rules | generative (empty = generative when OPENAI_API_KEY is present)
    DIALOGUE_POLICY: str = (os.getenv("DIALOGUE_POLICY", "") or "").strip().lower()

    # ================= Stores & housekeeping =================
    AUDIO_CACHE_TTL_SECONDS: float = float(os.getenv("AUDIO_CACHE_TTL_SECONDS", "60"))
    # Contexts are dropped this long after the call was seen in a terminal status
    CONTEXT_RETENTION_SECONDS: float = float(os.getenv("CONTEXT_RETENTION_SECONDS", "1800"))
    HOUSEKEEPING_INTERVAL_SECONDS: float = float(os.getenv("HOUSEKEEPING_INTERVAL_SECONDS", "15"))

    # ================= Status polling =================
    STATUS_POLL_INTERVAL_SECONDS: float = float(os.getenv("STATUS_POLL_INTERVAL_SECONDS", "3.0"))
    STATUS_POLL_TIMEOUT_SECONDS: float = float(os.getenv("STATUS_POLL_TIMEOUT_SECONDS", "300"))
    AUTO_MONITOR_CALLS: bool = _env_bool("AUTO_MONITOR_CALLS", "true")

    # Reject new calls while one is still in flight
    SINGLE_CALL_MODE: bool = _env_bool("SINGLE_CALL_MODE")

    # IMPORTANT: keep localhost + 127.0.0.1 for local dashboards
    CORS_ORIGINS: list[str] = _parse_origins(
        os.getenv(
            "CORS_ORIGINS",
            "http://127.0.0.1:3000,http://localhost:3000",
        )
    )

    RATE_LIMIT_ENABLED: bool = _env_bool("RATE_LIMIT_ENABLED", "true")

    # ================= Environment Configuration =================
    ENVIRONMENT: str = os.getenv("ENVIRONMENT", "development")


settings = Settings()


# =============================================================================
# CONFIGURATION ERRORS & VALIDATION
# =============================================================================

class ConfigurationError(Exception):
    """Raised when provider credentials or required settings are missing."""
    pass


class ConfigValidationError(ConfigurationError):
    """Raised at startup when required configuration is missing or invalid."""
    pass


def validate_config(raise_on_error: bool = True) -> dict:
    """
    Validate all configuration settings.

    Args:
        raise_on_error: If True, raises ConfigValidationError on critical errors.
                       If False, returns dict with errors and warnings.

    Returns:
        Dict with 'errors' (critical) and 'warnings' (non-critical) lists.
    """
    errors = []
    warnings = []

    # Required for core call functionality
    if not settings.TWILIO_ACCOUNT_SID:
        errors.append("TWILIO_ACCOUNT_SID is required for making calls")
    if not settings.TWILIO_AUTH_TOKEN:
        errors.append("TWILIO_AUTH_TOKEN is required for making calls")
    if not settings.TWILIO_PHONE_NUMBER:
        errors.append("TWILIO_PHONE_NUMBER is required for outbound calls")

    # Required for speech
    if not settings.ELEVENLABS_API_KEY:
        errors.append("ELEVENLABS_API_KEY is required for speech synthesis")
    if not settings.ELEVENLABS_VOICE_ID:
        errors.append("ELEVENLABS_VOICE_ID is required for speech synthesis")

    # Warnings - Degraded functionality
    if not settings.OPENAI_API_KEY:
        warnings.append("OPENAI_API_KEY missing - rule-based dialogue only, classification reports unreachable")
    if settings.DIALOGUE_POLICY and settings.DIALOGUE_POLICY not in ("rules", "generative"):
        warnings.append(f"DIALOGUE_POLICY={settings.DIALOGUE_POLICY!r} not recognised - falling back to default")
    if settings.TEST_PHONE_NUMBER:
        warnings.append("TEST_PHONE_NUMBER set - all calls are redirected to the test number")

    # Production-specific warnings
    if settings.ENVIRONMENT == "production":
        if "localhost" in settings.BASE_URL or not settings.BASE_URL.startswith("https://"):
            warnings.append("BASE_URL is not a public HTTPS URL in production")
        if not settings.TWILIO_VALIDATE_SIGNATURE:
            warnings.append("TWILIO_VALIDATE_SIGNATURE disabled in production")

    result = {"errors": errors, "warnings": warnings}

    if raise_on_error and errors:
        raise ConfigValidationError(f"Configuration errors: {'; '.join(errors)}")

    return result


def get_config_status() -> dict:
    """Configuration presence flags for the health endpoint."""
    return {
        "environment": settings.ENVIRONMENT,
        "twilio_configured": all([
            settings.TWILIO_ACCOUNT_SID,
            settings.TWILIO_AUTH_TOKEN,
            settings.TWILIO_PHONE_NUMBER,
        ]),
        "elevenlabs_configured": all([
            settings.ELEVENLABS_API_KEY,
            settings.ELEVENLABS_VOICE_ID,
        ]),
        "openai_configured": bool(settings.OPENAI_API_KEY),
        "test_mode": bool(settings.TEST_PHONE_NUMBER),
        "single_call_mode": settings.SINGLE_CALL_MODE,
        "signature_validation": settings.TWILIO_VALIDATE_SIGNATURE,
    }
