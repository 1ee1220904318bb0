import asyncio
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from payment_tracker import config
from payment_tracker.auth import verify_token
from payment_tracker.channel import SocketIOChannel
from payment_tracker.models import PaymentMethod, SessionView
from payment_tracker.query_client import PaymentQueryClient
from payment_tracker.tracker import PaymentStatusTracker

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/tracking")

tracker = PaymentStatusTracker(
    query_client=PaymentQueryClient.from_config(),
    channel_factory=SocketIOChannel.from_config,
    fallback_timeout=config.FALLBACK_TIMEOUT,
)

# One observed session per payment
sessions = {}

# Seconds a resolved session stays readable before it is dropped
RESOLVED_SESSION_TTL = config.RESOLVED_SESSION_TTL


class TrackingRequest(BaseModel):
    payment_id: str = Field(min_length=1)
    method: Optional[PaymentMethod] = None
    checkout_id: Optional[str] = None
    initial_status: Optional[str] = None


def get_session(payment_id: str):
    session = sessions.get(payment_id)
    if session is None:
        raise HTTPException(status_code=404, detail="No tracking session for this payment")
    return session


def evict_when_resolved(session):
    loop = asyncio.get_running_loop()
    handle = None

    def on_change(changed):
        nonlocal handle
        if changed.terminal and handle is None:
            handle = loop.call_later(RESOLVED_SESSION_TTL, evict, changed)

    session.add_listener(on_change)
    on_change(session)


def evict(session):
    if sessions.get(session.payment_id) is session:
        tracker.stop(session)
        del sessions[session.payment_id]
        logger.info(f"Evicted resolved session for payment {session.payment_id}")


@router.post("", response_model=SessionView)
async def start_tracking(
    request: TrackingRequest,
    auth=Depends(verify_token)
):
    existing = sessions.get(request.payment_id)
    if existing and existing.active:
        return existing.snapshot()
    if existing:
        tracker.stop(existing)

    method = request.method or PaymentMethod.infer(request.checkout_id)
    session = tracker.start(
        request.payment_id,
        method,
        checkout_id=request.checkout_id,
        initial_status=request.initial_status,
    )
    sessions[request.payment_id] = session
    evict_when_resolved(session)

    return session.snapshot()


@router.get("/{payment_id}", response_model=SessionView)
async def get_tracking(payment_id: str, auth=Depends(verify_token)):
    return get_session(payment_id).snapshot()


@router.post("/{payment_id}/refresh", response_model=SessionView)
async def refresh_tracking(payment_id: str, auth=Depends(verify_token)):
    session = get_session(payment_id)
    tracker.refresh(session)
    return session.snapshot()


@router.delete("/{payment_id}", response_model=SessionView)
async def stop_tracking(payment_id: str, auth=Depends(verify_token)):
    session = get_session(payment_id)
    tracker.stop(session)
    del sessions[payment_id]
    return session.snapshot()


async def stop_all():
    for session in list(sessions.values()):
        tracker.stop(session)
    for session in list(sessions.values()):
        await session.drain()
    sessions.clear()
    logger.info("Stopped all tracking sessions")
