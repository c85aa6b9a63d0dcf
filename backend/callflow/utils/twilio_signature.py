# backend/callflow/utils/twilio_signature.py
"""
Twilio Request Signature Verification

Checks that webhook requests really come from Twilio, using the
X-Twilio-Signature header and twilio's RequestValidator.

Validation is opt-in (TWILIO_VALIDATE_SIGNATURE=true). Twilio signs the URL
it was given, so the URL is rebuilt from BASE_URL rather than taken from the
request; behind ngrok or a proxy the two differ.

Reference: https://www.twilio.com/docs/usage/security#validating-requests
"""
from typing import Dict, Optional
from urllib.parse import urlparse

from fastapi import HTTPException, Request
from twilio.request_validator import RequestValidator

from callflow.config import settings
from callflow.utils.logger import logger


def get_webhook_url_for_validation(request_url: str, base_url: Optional[str] = None) -> str:
    """
    The URL Twilio signed: configured BASE_URL + request path and query.
    Falls back to the request URL when BASE_URL is empty.
    """
    base = (base_url if base_url is not None else getattr(settings, "BASE_URL", "")).strip().rstrip("/")
    if not base:
        return request_url

    parsed = urlparse(request_url)
    path = parsed.path
    if parsed.query:
        path += f"?{parsed.query}"
    return base + path


def validate_twilio_signature(
    signature: str,
    url: str,
    params: Dict[str, str],
    auth_token: Optional[str] = None,
) -> bool:
    """True if `signature` matches what Twilio would send for url + params."""
    if not signature:
        logger.warning("[Twilio Security] No X-Twilio-Signature header provided")
        return False

    token = auth_token or getattr(settings, "TWILIO_AUTH_TOKEN", None)
    if not token:
        logger.error("[Twilio Security] TWILIO_AUTH_TOKEN not configured")
        return False

    is_valid = RequestValidator(token).validate(url, params, signature)
    if not is_valid:
        logger.warning(f"[Twilio Security] Invalid signature for URL: {url}")
    return is_valid


def should_validate_signature() -> bool:
    return bool(getattr(settings, "TWILIO_VALIDATE_SIGNATURE", False))


async def verify_twilio_request(request: Request) -> None:
    """
    FastAPI dependency for Twilio webhooks.

    No-op unless TWILIO_VALIDATE_SIGNATURE is set; otherwise rejects
    unsigned or tampered requests with 403.
    """
    if not should_validate_signature():
        return

    form = await request.form()
    params = {k: str(v) for k, v in form.items()}
    url = get_webhook_url_for_validation(str(request.url))
    signature = request.headers.get("X-Twilio-Signature", "")

    if not validate_twilio_signature(signature, url, params):
        raise HTTPException(status_code=403, detail="Invalid Twilio signature")
