# backend/callflow/services/script_generator.py
"""
Opening line for an outbound call.

Pure and deterministic: the same business attributes always produce the same
script, and missing attributes drop their clause entirely.
"""
import re
from typing import Optional

CALL_TO_ACTION = (
    "I'm reaching out because I think we can help your business grow and reach more customers. "
    "Do you have a quick minute to talk?"
)

DEFAULT_SCRIPT = (
    "Hey! How's it going? I'm calling because I think I can really help your business grow. "
    "Are you free to talk for a quick minute?"
)

_WS = re.compile(r"\s+")
_POSTCODE = re.compile(r"\b\d[\d-]*\b")


def _clean(value: Optional[str]) -> str:
    return _WS.sub(" ", (value or "")).strip().strip(",.")


def _article(word: str) -> str:
    # spelling, not sound: "an hvac" / "a uniform" are not handled
    return "an" if word[:1] in "aeiou" else "a"


def location_from_address(address: Optional[str]) -> str:
    """
    City/region from the trailing comma-delimited segment of an address.

    "12 Main St, Austin" -> "Austin", "9 Elm Rd, Austin, TX 78701" -> "TX".
    Addresses without a comma carry no usable location.
    """
    parts = (address or "").split(",")
    if len(parts) < 2:
        return ""
    tail = _POSTCODE.sub(" ", parts[-1])
    return _clean(tail)


def generate_script(company_name: str, category: str = "", address: str = "") -> str:
    company = _clean(company_name)
    greeting = f"Hi, I'm calling {company}" if company else "Hi there"

    location = location_from_address(address)
    if location:
        greeting += f" in {location}"

    sentences = [greeting + "."]

    kind = _clean(category).lower()
    if kind:
        sentences.append(f"I see you're {_article(kind)} {kind} business.")

    sentences.append(CALL_TO_ACTION)
    return " ".join(sentences)
