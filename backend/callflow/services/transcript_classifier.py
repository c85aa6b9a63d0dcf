# backend/callflow/services/transcript_classifier.py
from __future__ import annotations

import re
from typing import List, Optional

from callflow.models.call import CallOutcome, Turn, TurnRole
from callflow.services.openai_service import OpenAIService
from callflow.utils.logger import logger

_NON_LABEL = re.compile(r"[^a-z_]")

CLASSIFY_PROMPT = """Analyze this sales call transcript and classify the business's response.

Transcript:
{transcript}

Classify as exactly one of:
- "interested": they showed interest, agreed to talk more, asked questions, wanted to schedule
- "not_interested": they declined, said no, asked to be removed, hung up
- "unreachable": no meaningful response, voicemail, couldn't connect

Return ONLY one word: interested, not_interested, or unreachable"""


def format_transcript(company_name: str, transcript: List[Turn], max_chars: int = 6000) -> str:
    who = (company_name or "").strip() or "Business"
    lines = [
        f"{'AI Caller' if t.role == TurnRole.AGENT else who}: {t.text}"
        for t in transcript
    ]
    convo = "\n".join(lines)
    # keep the end of long calls; that's where the decision is
    return convo[-max_chars:]


def parse_outcome(text: Optional[str]) -> CallOutcome:
    """Map a model answer onto an outcome; anything unexpected is unreachable."""
    cleaned = _NON_LABEL.sub("", (text or "").strip().lower())
    try:
        return CallOutcome(cleaned)
    except ValueError:
        return CallOutcome.UNREACHABLE


class TranscriptClassifier:
    """
    Post-call interest classification.

    Transcripts with no real exchange (0 or 1 turns) are not sent to the model
    and report None. Provider failures are downgraded to UNREACHABLE.
    """

    def __init__(self, llm: Optional[OpenAIService] = None):
        self.llm = llm or OpenAIService()

    async def classify(self, company_name: str, transcript: List[Turn]) -> Optional[CallOutcome]:
        if len(transcript) <= 1:
            return None

        prompt = CLASSIFY_PROMPT.format(transcript=format_transcript(company_name, transcript))
        try:
            text = await self.llm.generate_completion(prompt, temperature=0.0, max_tokens=5)
        except Exception as e:
            logger.error(f"[classifier] classification error, reporting unreachable: {e}")
            return CallOutcome.UNREACHABLE

        outcome = parse_outcome(text)
        logger.info(f"[classifier] company={company_name!r} turns={len(transcript)} -> {outcome.value}")
        return outcome
