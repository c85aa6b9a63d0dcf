# backend/callflow/models/call.py
from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class TurnRole(str, Enum):
    """Who spoke a transcript turn."""

    AGENT = "agent"
    COUNTERPARTY = "counterparty"


class CallOutcome(str, Enum):
    """Interest classification derived from a finished transcript. Never stored."""

    INTERESTED = "interested"
    NOT_INTERESTED = "not_interested"
    UNREACHABLE = "unreachable"


class CallStatus(str, Enum):
    """Twilio call status values."""

    QUEUED = "queued"
    INITIATED = "initiated"
    RINGING = "ringing"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    BUSY = "busy"
    FAILED = "failed"
    NO_ANSWER = "no-answer"
    CANCELED = "canceled"


TERMINAL_STATUSES = frozenset({
    CallStatus.COMPLETED.value,
    CallStatus.BUSY.value,
    CallStatus.FAILED.value,
    CallStatus.NO_ANSWER.value,
    CallStatus.CANCELED.value,
})


def is_terminal_status(status: Optional[str]) -> bool:
    return (status or "").strip().lower() in TERMINAL_STATUSES


@dataclass(frozen=True)
class Turn:
    role: TurnRole
    text: str

    def to_dict(self) -> Dict[str, str]:
        return {"role": self.role.value, "text": self.text}


@dataclass
class CallContext:
    """
    Per-call conversation state, keyed by the Twilio CallSid.

    The opening script is always turn 0 and turns alternate agent/counterparty
    from there. Only CallContextStore mutates the transcript.
    """

    company_name: str = ""
    category: str = ""
    address: str = ""
    summary: str = ""
    website: str = ""
    script: str = ""
    transcript: List[Turn] = field(default_factory=list)

    # traceability / bookkeeping
    requested_number: str = ""
    dialed_number: str = ""
    status: str = CallStatus.QUEUED.value
    is_default: bool = False
    created_at: float = field(default_factory=time.monotonic)
    ended_at: Optional[float] = None

    @property
    def last_role(self) -> Optional[TurnRole]:
        return self.transcript[-1].role if self.transcript else None


@dataclass
class CallRequest:
    phone_number: str
    company_name: str
    address: str = ""
    category: str = ""
    website: str = ""
    summary: str = ""


@dataclass
class PlacedCall:
    call_id: str
    normalized_number: str
    company_name: str
    test_mode: bool
    requested_number: str = ""

    def to_response(self) -> Dict[str, Any]:
        return {
            "success": True,
            "callId": self.call_id,
            "normalizedNumber": self.normalized_number,
            "companyName": self.company_name,
            "testMode": self.test_mode,
        }
