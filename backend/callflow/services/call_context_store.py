# backend/callflow/services/call_context_store.py
"""
Process-wide store of per-call conversation state.

Every webhook, transcript lookup and status update for a call goes through
this store. Mutations of one call's transcript are serialized by a per-call
asyncio.Lock; the lock is only held while the in-memory transcript is read or
appended, never while a provider call is in flight.
"""
from __future__ import annotations

import asyncio
import threading
import time
from dataclasses import dataclass, replace
from typing import Callable, Dict, List, Optional

from callflow.models.call import CallContext, CallStatus, Turn, TurnRole, is_terminal_status
from callflow.services.exceptions import TurnOrderError
from callflow.utils.logger import logger


@dataclass
class Exchange:
    """
    One counterparty utterance awaiting its agent reply.

    `owner` is True for the request that appended the utterance and must
    compute the reply. Duplicate deliveries get owner=False and wait on the
    owner's result instead of appending a second counterparty turn.
    """

    call_id: str
    owner: bool
    context: CallContext
    reply: "asyncio.Future[str]"

    async def wait(self) -> str:
        return await asyncio.shield(self.reply)


class CallContextStore:
    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._contexts: Dict[str, CallContext] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._pending: Dict[str, asyncio.Future] = {}
        self._guard = threading.Lock()  # map-level create/evict

    # -----------------------------
    # Map operations
    # -----------------------------
    def create(self, call_id: str, context: CallContext) -> bool:
        """Insert a context. Returns False (and changes nothing) if one exists."""
        with self._guard:
            if call_id in self._contexts:
                logger.warning(f"[store] context already exists for call_sid={call_id}; create ignored")
                return False
            self._contexts[call_id] = context
            self._locks[call_id] = asyncio.Lock()
            return True

    def get(self, call_id: str) -> Optional[CallContext]:
        """The context for a call, or None when none exists (stale or foreign id)."""
        return self._contexts.get(call_id)

    def get_or_create_default(self, call_id: str, script: str) -> CallContext:
        """
        Context for a call id the store has never seen.

        Personalization is lost but the call continues: the generic script
        becomes turn 0.
        """
        with self._guard:
            ctx = self._contexts.get(call_id)
            if ctx is not None:
                return ctx
            ctx = CallContext(
                script=script,
                transcript=[Turn(TurnRole.AGENT, script)],
                status=CallStatus.IN_PROGRESS.value,
                is_default=True,
                created_at=self._clock(),
            )
            self._contexts[call_id] = ctx
            self._locks[call_id] = asyncio.Lock()
        logger.warning(f"[store] no context for call_sid={call_id}; using default context")
        return ctx

    async def attach_placement(self, call_id: str, placed: CallContext) -> bool:
        """
        Fill a default context in place with the placement's business details.

        Twilio can hit the webhook before the placement is stored. The turns
        already spoken (and the script they came from) are kept so the
        transcript still alternates. Returns False unless a default context
        exists for the call.
        """
        ctx = self.get(call_id)
        if ctx is None or not ctx.is_default:
            return False

        async with self._lock_for(call_id):
            if not ctx.is_default:
                return False
            ctx.company_name = placed.company_name
            ctx.category = placed.category
            ctx.address = placed.address
            ctx.summary = placed.summary
            ctx.website = placed.website
            ctx.requested_number = placed.requested_number
            ctx.dialed_number = placed.dialed_number
            ctx.is_default = False
        logger.info(f"[store] placement details attached to default context for call_sid={call_id}")
        return True

    def evict(self, call_id: str) -> bool:
        with self._guard:
            self._locks.pop(call_id, None)
            return self._contexts.pop(call_id, None) is not None

    def __len__(self) -> int:
        return len(self._contexts)

    def __contains__(self, call_id: object) -> bool:
        return call_id in self._contexts

    def clear(self) -> None:
        with self._guard:
            self._contexts.clear()
            self._locks.clear()
            self._pending.clear()

    def _lock_for(self, call_id: str) -> asyncio.Lock:
        with self._guard:
            lock = self._locks.get(call_id)
            if lock is None:
                lock = self._locks[call_id] = asyncio.Lock()
            return lock

    # -----------------------------
    # Transcript mutation
    # -----------------------------
    @staticmethod
    def _append(call_id: str, ctx: CallContext, turn: Turn) -> None:
        expected = TurnRole.AGENT if ctx.last_role in (None, TurnRole.COUNTERPARTY) else TurnRole.COUNTERPARTY
        if turn.role != expected:
            raise TurnOrderError(
                f"call_sid={call_id}: expected {expected.value} turn, got {turn.role.value}"
            )
        ctx.transcript.append(turn)

    async def append_turn(self, call_id: str, turn: Turn) -> None:
        ctx = self.get(call_id)
        if ctx is None:
            raise KeyError(call_id)
        async with self._lock_for(call_id):
            self._append(call_id, ctx, turn)

    async def begin_exchange(self, call_id: str, utterance: str) -> Exchange:
        """
        Record the counterparty's utterance and hand back a transcript snapshot.

        The returned context is a copy, safe to read after the lock is released.
        """
        ctx = self.get(call_id)
        if ctx is None:
            raise KeyError(call_id)

        async with self._lock_for(call_id):
            pending = self._pending.get(call_id)
            if pending is not None and not pending.done():
                logger.warning(f"[store] duplicate utterance for call_sid={call_id} while a reply is in flight")
                return Exchange(call_id, False, replace(ctx, transcript=list(ctx.transcript)), pending)

            self._append(call_id, ctx, Turn(TurnRole.COUNTERPARTY, utterance))
            fut: asyncio.Future = asyncio.get_running_loop().create_future()
            self._pending[call_id] = fut
            return Exchange(call_id, True, replace(ctx, transcript=list(ctx.transcript)), fut)

    async def complete_exchange(self, call_id: str, reply: str) -> None:
        """Append the agent reply for the open exchange and release waiting duplicates."""
        async with self._lock_for(call_id):
            fut = self._pending.pop(call_id, None)
            ctx = self.get(call_id)
            if ctx is not None and ctx.last_role == TurnRole.COUNTERPARTY:
                self._append(call_id, ctx, Turn(TurnRole.AGENT, reply))
            if fut is not None and not fut.done():
                fut.set_result(reply)

    # -----------------------------
    # Status & retention
    # -----------------------------
    def mark_status(self, call_id: str, status: str) -> Optional[CallContext]:
        ctx = self.get(call_id)
        status = (status or "").strip().lower()
        if ctx is None or not status:
            return ctx
        ctx.status = status
        if is_terminal_status(status) and ctx.ended_at is None:
            ctx.ended_at = self._clock()
            logger.info(f"[store] call_sid={call_id} reached terminal status={status}")
        return ctx

    def in_flight(self) -> List[str]:
        return [cid for cid, ctx in list(self._contexts.items()) if not is_terminal_status(ctx.status)]

    def evict_expired(self, retention_seconds: float) -> int:
        """Drop contexts whose call ended more than `retention_seconds` ago."""
        now = self._clock()
        expired = [
            cid for cid, ctx in list(self._contexts.items())
            if ctx.ended_at is not None and now - ctx.ended_at >= retention_seconds
            and cid not in self._pending
        ]
        for cid in expired:
            self.evict(cid)
        if expired:
            logger.info(f"[store] evicted {len(expired)} finished call contexts")
        return len(expired)
