# backend/callflow/utils/validators.py
"""
Input validation utilities.

Provides:
- Phone number normalization to E.164-style international format
- Free-text field cleanup for call placement requests
"""

import re
from typing import Optional, Tuple

_NON_DIGITS = re.compile(r"\D")


# ==================== Phone Number Validation ====================

def normalize_phone_number(phone: str, default_country_code: str = "1") -> str:
    """
    Normalize a phone number to international format.

    Already "+"-prefixed numbers are returned unchanged (trimmed), so the
    function is idempotent. Otherwise formatting is stripped, a bare 10-digit
    number gets the default country code, and anything else is prefixed
    with "+".

        normalize_phone_number("(555) 123-4567") -> "+15551234567"
        normalize_phone_number("+15551234567")   -> "+15551234567"
        normalize_phone_number("447700900123")   -> "+447700900123"
    """
    phone = (phone or "").strip()
    if phone.startswith("+"):
        return phone

    digits = _NON_DIGITS.sub("", phone)
    country = _NON_DIGITS.sub("", default_country_code or "1")
    if len(digits) == 10:
        return f"+{country}{digits}"
    return f"+{digits}"


def validate_phone_number(
    phone: str,
    default_country_code: str = "1",
) -> Tuple[bool, Optional[str], Optional[str]]:
    """
    Validate and normalize a phone number.

    Returns:
        Tuple of (is_valid, normalized_number, error_message)
    """
    if not phone or not phone.strip():
        return False, None, "Phone number is required"

    normalized = normalize_phone_number(phone, default_country_code)
    digits = _NON_DIGITS.sub("", normalized)

    # E.164 allows at most 15 digits; anything under 7 cannot be dialed
    if not 7 <= len(digits) <= 15:
        return False, None, "Phone number must have 7-15 digits"

    return True, normalized, None


# ==================== Text Cleanup ====================

def clean_text(value: Optional[str], max_length: int = 2000) -> str:
    """Trim, collapse whitespace and cap length of a free-text field."""
    if not value:
        return ""
    text = re.sub(r"\s+", " ", str(value)).strip()
    return text[:max_length]
