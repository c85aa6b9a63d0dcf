# backend/callflow/services/call_monitor.py
"""
Status polling for placed calls.

Polls Twilio for a call's status until it reaches a terminal state (or the
absolute timeout passes), records the status on the call context, and
classifies the finished transcript once.

The status callback webhook (/api/calls/handler/status) updates the same
context fields, so both paths can run side by side.
"""
from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional

from callflow.config import settings
from callflow.models.call import CallOutcome, is_terminal_status
from callflow.services.call_context_store import CallContextStore
from callflow.services.exceptions import ConfigurationError, ProviderError
from callflow.services.transcript_classifier import TranscriptClassifier
from callflow.services.twilio_service import TwilioService
from callflow.utils.logger import logger

MAX_CONSECUTIVE_ERRORS = 10
MAX_ACTIVE_MONITORS = 100


@dataclass
class MonitorResult:
    call_id: str
    status: Optional[str] = None
    duration: Optional[int] = None
    classification: Optional[CallOutcome] = None
    timed_out: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "callId": self.call_id,
            "status": self.status,
            "duration": self.duration,
            "classification": self.classification.value if self.classification else None,
            "timedOut": self.timed_out,
        }


class CallMonitor:
    def __init__(
        self,
        store: CallContextStore,
        twilio: TwilioService,
        classifier: TranscriptClassifier,
        poll_interval: Optional[float] = None,
        timeout: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.store = store
        self.twilio = twilio
        self.classifier = classifier
        self.poll_interval = float(
            poll_interval if poll_interval is not None else getattr(settings, "STATUS_POLL_INTERVAL_SECONDS", 3)
        )
        self.timeout = float(
            timeout if timeout is not None else getattr(settings, "STATUS_POLL_TIMEOUT_SECONDS", 300)
        )
        self._clock = clock
        self._sleep = sleep
        self._tasks: Dict[str, asyncio.Task] = {}

    async def watch(self, call_sid: str) -> MonitorResult:
        """
        Poll until the call ends or the timeout passes.

        Provider errors while polling are logged and retried on the next tick;
        too many in a row stop the watch without a terminal status.
        """
        result = MonitorResult(call_id=call_sid)
        deadline = self._clock() + self.timeout
        consecutive_errors = 0
        logger.info(f"[monitor] watching call_sid={call_sid} every {self.poll_interval}s (timeout {self.timeout}s)")

        while True:
            try:
                info = await self.twilio.fetch_call_status(call_sid)
                consecutive_errors = 0
            except ConfigurationError:
                raise
            except ProviderError as e:
                consecutive_errors += 1
                logger.warning(f"[monitor] status poll failed for call_sid={call_sid}: {e}")
                if consecutive_errors >= MAX_CONSECUTIVE_ERRORS:
                    logger.error(f"[monitor] too many consecutive errors, giving up on call_sid={call_sid}")
                    return result
            else:
                result.status = info.get("status")
                result.duration = info.get("duration")
                self.store.mark_status(call_sid, result.status or "")

                if is_terminal_status(result.status):
                    result.classification = await self._classify(call_sid)
                    logger.info(f"[monitor] call_sid={call_sid} finished: {result.to_dict()}")
                    return result

            if self._clock() >= deadline:
                result.timed_out = True
                logger.warning(f"[monitor] call_sid={call_sid} still {result.status!r} after {self.timeout}s")
                return result

            await self._sleep(self.poll_interval)

    async def _classify(self, call_sid: str) -> Optional[CallOutcome]:
        ctx = self.store.get(call_sid)
        if ctx is None:
            return None
        return await self.classifier.classify(ctx.company_name, list(ctx.transcript))

    # -----------------------------
    # Background watches
    # -----------------------------
    def start(self, call_sid: str) -> asyncio.Task:
        """Run watch() as a background task; one task per call."""
        existing = self._tasks.get(call_sid)
        if existing is not None and not existing.done():
            return existing

        if len(self._tasks) >= MAX_ACTIVE_MONITORS:
            for sid in [s for s, t in self._tasks.items() if t.done()]:
                self._tasks.pop(sid, None)

        task = asyncio.create_task(self._run(call_sid))
        self._tasks[call_sid] = task
        return task

    async def _run(self, call_sid: str) -> Optional[MonitorResult]:
        try:
            return await self.watch(call_sid)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"[monitor] watch crashed for call_sid={call_sid}: {e}")
            return None
        finally:
            # a stopped watch must not drop its replacement's entry
            if self._tasks.get(call_sid) is asyncio.current_task():
                self._tasks.pop(call_sid, None)

    async def stop(self, call_sid: str) -> None:
        task = self._tasks.pop(call_sid, None)
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    def active_count(self) -> int:
        return sum(1 for t in self._tasks.values() if not t.done())

    async def cleanup_all(self) -> int:
        """Cancel every background watch. Called on shutdown."""
        sids = list(self._tasks.keys())
        for sid in sids:
            await self.stop(sid)
        if sids:
            logger.info(f"[monitor] stopped {len(sids)} active monitors")
        return len(sids)
