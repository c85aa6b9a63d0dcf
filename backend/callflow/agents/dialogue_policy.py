# backend/callflow/agents/dialogue_policy.py
"""
Dialogue policies: produce the agent's next spoken line.

Two interchangeable variants behind DialoguePolicy.next_turn():
- RuleBasedPolicy: keyword categories with canned lines, no external calls
- GenerativePolicy: OpenAI-backed, one short sentence, fixed fallback line
The variant is chosen once at construction time (build_dialogue_policy).
"""
from __future__ import annotations

import abc
import re
from typing import List, Optional, Sequence, Tuple

from callflow.config import settings
from callflow.models.call import CallContext, Turn, TurnRole
from callflow.services.exceptions import ConfigurationError, ProviderError
from callflow.services.openai_service import OpenAIService
from callflow.utils.logger import logger

FALLBACK_REPLY = "Sorry, I didn't quite catch that. Would you be open to a quick follow-up call later this week?"


class DialoguePolicy(abc.ABC):
    name: str = "base"

    @abc.abstractmethod
    async def next_turn(self, utterance: Optional[str], context: CallContext) -> str:
        """Return the agent's next line. Must not raise for empty or odd input."""


# -----------------------------
# Rule-based
# -----------------------------
def _keywords(*phrases: str) -> re.Pattern:
    return re.compile(r"\b(?:" + "|".join(re.escape(p) for p in phrases) + r")\b", re.IGNORECASE)


NEGATIVE_REPLY = (
    "I totally get it, you're probably busy. No pressure at all. "
    "Is there a better time I could reach out?"
)

# Order matters: first match wins. Rejection phrases come before affirmative
# ("not interested"), a bare "no" after it ("yes, no problem").
RULES: Sequence[Tuple[str, re.Pattern, str]] = (
    (
        "greeting",
        _keywords("hello", "hi", "hey", "what's up", "good morning", "good afternoon"),
        "Hey! Thanks for picking up. I'm calling because I think I can really help your business grow. "
        "Are you open to hearing about some upgrade options?",
    ),
    ("negative", _keywords("not interested", "not right now", "no thanks"), NEGATIVE_REPLY),
    (
        "affirmative",
        _keywords("yes", "yeah", "sure", "okay", "ok", "yep", "sounds good", "interested"),
        "Awesome! I'm excited to help you out. What kind of customers are you trying to reach more of right now?",
    ),
    ("negative", _keywords("no", "nope", "nah"), NEGATIVE_REPLY),
    (
        "price",
        _keywords("cost", "costs", "price", "pricing", "how much", "expensive", "money", "afford"),
        "Totally fair to ask about pricing. We have a few options depending on what you need, "
        "and a lot of businesses see it pay for itself quickly. Could we set up a quick chat to go over the numbers?",
    ),
    (
        "scheduling",
        _keywords("schedule", "call back", "meeting", "time", "when", "later", "tomorrow", "next week"),
        "Perfect! I'd love to set something up. Are you free later today, or would tomorrow work better?",
    ),
    (
        "farewell",
        _keywords("bye", "goodbye", "thanks", "thank you", "gotta go", "have to go"),
        "Absolutely! Thanks so much for your time today. Have an amazing day!",
    ),
)

PROBING_REPLY = (
    "I hear you. I genuinely think we can help your business, and I'd love to show you how. "
    "Want to hear a bit more about what we can do for you?"
)


def match_category(utterance: Optional[str]) -> Optional[str]:
    text = (utterance or "").strip()
    if not text:
        return None
    for category, pattern, _ in RULES:
        if pattern.search(text):
            return category
    return None


class RuleBasedPolicy(DialoguePolicy):
    name = "rules"

    async def next_turn(self, utterance: Optional[str], context: CallContext) -> str:
        category = match_category(utterance if isinstance(utterance, str) else None)
        for name, _, reply in RULES:
            if name == category:
                logger.info(f"[dialogue] rules matched category={category}")
                return reply
        return PROBING_REPLY


# -----------------------------
# Generative
# -----------------------------
SYSTEM_PROMPT = (
    "You are a friendly, upbeat sales rep on a live outbound phone call with a small business. "
    "Your goal is to book a short follow-up call. Reply with exactly ONE short spoken sentence "
    "(under 30 words), no lists, no emojis, no speaker labels. "
    "If the business agrees, says goodbye, or asks to end the call, thank them warmly and close the call."
)

_SPEAKER_LABEL = re.compile(r"(?im)^\s*(?:agent|ai caller|assistant|caller|business|counterparty|user)\s*:\s*")
_SENTENCE_END = re.compile(r"(?<=[.!?])\s+")


def _transcript_lines(transcript: List[Turn], company: str, limit: int = 12) -> str:
    lines = []
    for turn in transcript[-limit:]:
        speaker = "Caller" if turn.role == TurnRole.AGENT else (company or "Business")
        lines.append(f"{speaker}: {turn.text}")
    return "\n".join(lines)


def build_turn_prompt(utterance: str, context: CallContext) -> str:
    company = context.company_name or "the business"
    facts = [f"Business: {company}"]
    if context.category:
        facts.append(f"Category: {context.category}")
    if context.address:
        facts.append(f"Address: {context.address}")
    if context.website:
        facts.append(f"Website: {context.website}")
    if context.summary:
        facts.append(f"About: {context.summary}")

    return (
        "\n".join(facts)
        + "\n\nConversation so far:\n"
        + (_transcript_lines(context.transcript, context.company_name) or "(none)")
        + f"\n\nThey just said: \"{utterance}\"\n\n"
        "Write the caller's next line: one short sentence that moves toward booking a follow-up."
    )


def clean_reply(text: str) -> str:
    """Strip speaker labels/quotes and keep only the first sentence."""
    t = _SPEAKER_LABEL.sub("", text or "").strip().strip('"').strip()
    t = re.sub(r"\s+", " ", t)
    parts = [p for p in _SENTENCE_END.split(t) if p.strip()]
    return parts[0].strip() if parts else ""


class GenerativePolicy(DialoguePolicy):
    name = "generative"

    def __init__(self, llm: Optional[OpenAIService] = None, fallback: str = FALLBACK_REPLY):
        self.llm = llm or OpenAIService()
        self.fallback = fallback

    async def next_turn(self, utterance: Optional[str], context: CallContext) -> str:
        text = utterance.strip() if isinstance(utterance, str) else ""
        if not text:
            return self.fallback

        try:
            raw = await self.llm.generate_completion(
                build_turn_prompt(text, context),
                system=SYSTEM_PROMPT,
                temperature=0.6,
                max_tokens=80,
            )
        except (ConfigurationError, ProviderError) as e:
            logger.warning(f"[dialogue] generative turn failed, using fallback: {e}")
            return self.fallback

        reply = clean_reply(raw)
        if not reply:
            logger.warning("[dialogue] generative turn returned empty text, using fallback")
            return self.fallback
        return reply


def build_dialogue_policy(kind: Optional[str] = None, llm: Optional[OpenAIService] = None) -> DialoguePolicy:
    """
    Pick the policy variant for this deployment.

    kind: "rules" | "generative"; defaults to DIALOGUE_POLICY, then to
    generative when an OpenAI key is configured.
    """
    kind = (kind if kind is not None else getattr(settings, "DIALOGUE_POLICY", "") or "").strip().lower()
    if kind not in ("rules", "generative"):
        kind = "generative" if getattr(settings, "OPENAI_API_KEY", None) else "rules"

    policy: DialoguePolicy = GenerativePolicy(llm=llm) if kind == "generative" else RuleBasedPolicy()
    logger.info(f"[dialogue] using {policy.name} policy")
    return policy
