# backend/callflow/main.py
import asyncio
from datetime import datetime
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from callflow.api import calls, session
from callflow.config import ConfigValidationError, get_config_status, settings, validate_config
from callflow.dependencies import get_audio_cache, get_call_monitor, get_store, get_synthesizer
from callflow.services.openai_service import OpenAIService
from callflow.utils.logger import logger
from callflow.utils.rate_limit import get_limiter

app = FastAPI(title="Callflow Outbound Call Orchestrator", version="1.0.0")

app.state.limiter = get_limiter()
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

_housekeeping_task: Optional[asyncio.Task] = None


async def housekeeping_once() -> dict:
    """Expire cached audio and drop contexts of calls that ended long ago."""
    swept = get_audio_cache().sweep()
    evicted = get_store().evict_expired(settings.CONTEXT_RETENTION_SECONDS)
    return {"audio_swept": swept, "contexts_evicted": evicted}


async def _housekeeping_loop() -> None:
    while True:
        await asyncio.sleep(settings.HOUSEKEEPING_INTERVAL_SECONDS)
        try:
            result = await housekeeping_once()
            if result["audio_swept"] or result["contexts_evicted"]:
                logger.info(f"[housekeeping] {result}")
        except Exception as e:
            logger.error(f"[housekeeping] error: {e}")


@app.on_event("startup")
async def startup_event():
    global _housekeeping_task
    logger.info("Callflow backend starting...")

    # Validate configuration (don't raise in dev mode)
    try:
        result = validate_config(raise_on_error=settings.ENVIRONMENT == "production")
        for warning in result.get("warnings", []):
            logger.warning(f"Config warning: {warning}")
        for error in result.get("errors", []):
            logger.error(f"Config error: {error}")
    except ConfigValidationError as e:
        logger.critical(f"FATAL: {e}")
        raise SystemExit(1)

    _housekeeping_task = asyncio.create_task(_housekeeping_loop())
    logger.info("Callflow backend started")


@app.on_event("shutdown")
async def shutdown_event():
    """Cleanup resources on shutdown."""
    global _housekeeping_task
    logger.info("Callflow backend shutting down...")

    if _housekeeping_task is not None:
        _housekeeping_task.cancel()
        try:
            await _housekeeping_task
        except asyncio.CancelledError:
            pass
        _housekeeping_task = None

    try:
        await get_call_monitor().cleanup_all()
    except Exception as e:
        logger.error(f"Error cleaning up monitors: {e}")

    try:
        await get_synthesizer().aclose()
        await OpenAIService.close_client()
    except Exception as e:
        logger.error(f"Error closing provider clients: {e}")

    logger.info("Callflow backend shutdown complete")


app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Routers
app.include_router(calls.router)
app.include_router(session.router)


@app.get("/")
async def root():
    return {"message": "Callflow API", "status": "running", "version": "1.0.0"}


@app.get("/health")
async def health():
    """
    Service health: provider configuration plus in-memory store sizes.

    "degraded" when Twilio or ElevenLabs is not configured (calls can't be
    placed or spoken); OpenAI is optional (rule-based dialogue).
    """
    config_status = get_config_status()
    health_status = {
        "status": "healthy",
        "timestamp": datetime.utcnow().isoformat(),
        "version": "1.0.0",
        "checks": {
            "config": config_status,
            "call_contexts": len(get_store()),
            "calls_in_flight": len(get_store().in_flight()),
            "audio_cache": get_audio_cache().get_stats(),
            "active_monitors": get_call_monitor().active_count(),
        },
    }

    if not config_status.get("twilio_configured") or not config_status.get("elevenlabs_configured"):
        health_status["status"] = "degraded"

    return health_status


@app.get("/health/simple")
async def health_simple():
    """Simple health check for load balancers."""
    return {"status": "ok"}
