# backend/callflow/api/session.py
from fastapi import APIRouter, Depends, HTTPException, Request

from callflow.dependencies import get_call_monitor, get_store, get_twilio
from callflow.models.call import CallStatus
from callflow.services.call_context_store import CallContextStore
from callflow.services.call_monitor import CallMonitor
from callflow.services.exceptions import ConfigurationError
from callflow.services.twilio_service import TwilioService
from callflow.utils.logger import logger
from callflow.utils.rate_limit import read_rate_limit, user_action_rate_limit

router = APIRouter(prefix="/api/session", tags=["session"])


@router.get("")
@read_rate_limit()
async def session_state(request: Request, store: CallContextStore = Depends(get_store)):
    """Whether a call is currently in flight (used by single-call mode clients)."""
    call_ids = store.in_flight()
    return {"active": bool(call_ids), "callIds": call_ids}


@router.post("/reset")
@user_action_rate_limit()
async def reset_session(
    request: Request,
    store: CallContextStore = Depends(get_store),
    twilio: TwilioService = Depends(get_twilio),
    monitor: CallMonitor = Depends(get_call_monitor),
):
    """Force-terminate every in-flight call."""
    call_ids = store.in_flight()
    ended, failed = [], []

    for sid in call_ids:
        await monitor.stop(sid)
        try:
            ok = await twilio.end_call(sid)
        except ConfigurationError as e:
            raise HTTPException(status_code=500, detail=str(e))

        if ok:
            store.mark_status(sid, CallStatus.CANCELED.value)
            ended.append(sid)
        else:
            failed.append(sid)

    logger.info(f"[session] reset: ended={ended} failed={failed}")
    return {"success": not failed, "ended": ended, "failed": failed}
