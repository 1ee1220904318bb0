"""
Payment status tracking.

A ``TrackingSession`` follows one payment from initiation until it reaches a
terminal status. Three sources feed it: the payment record fetched from the
API, realtime events pushed over a ``RealtimeChannel``, and for M-Pesa a
single fallback status query fired when the push result is late.

All state changes happen on the event loop thread. Every update goes through
``PaymentStatusTracker._apply``: non-terminal statuses may replace each other,
the first terminal status freezes the session and anything after it is
dropped. Once a push source has reported, a fetched record can only
resolve the session, never move it back to an earlier non-terminal status.
"""
import asyncio
import logging
from functools import partial
from typing import Optional

from payment_tracker.channel import (
    CALLBACK_RECEIVED,
    CONNECT,
    CONNECT_ERROR,
    DISCONNECT,
    PAYMENT_UPDATED,
)
from payment_tracker.events import parse_callback, parse_payment_update
from payment_tracker.exceptions import ChannelError, PaymentQueryError
from payment_tracker.models import PaymentMethod, PaymentStatus, SessionView
from payment_tracker.resolution import (
    FALLBACK_FAILURE_MESSAGE,
    Outcome,
    map_paystack_status,
    map_record_status,
    map_result_code,
)

logger = logging.getLogger(__name__)

DEFAULT_FALLBACK_TIMEOUT = 60.0
CHANNEL_ERROR_MESSAGE = "Realtime connection error"


class TrackingSession:
    def __init__(self, payment_id: str, method: PaymentMethod, checkout_id: Optional[str] = None,
                 status: PaymentStatus = PaymentStatus.PENDING):
        self.payment_id = payment_id
        self.method = method
        self.checkout_id = checkout_id
        self.status = status
        self.error_message = None
        self.channel_connected = False
        self.channel_error = None
        self.fallback_armed = False
        self.fallback_fired = False
        self.stopped = False
        self.payment = None
        # Set once a push source (channel or fallback query) has reported a status
        self.pushed = False

        self._channel = None
        self._timer = None
        self._tasks = set()
        self._listeners = []
        self._settled = asyncio.Event()

    @property
    def terminal(self):
        return self.status.is_terminal

    @property
    def active(self):
        return not self.stopped and not self.terminal

    def add_listener(self, callback):
        """Register ``callback(session)``, called after every state change."""
        self._listeners.append(callback)

    async def wait_settled(self, timeout=None) -> PaymentStatus:
        """Wait until the session is terminal or stopped and return its status."""
        await asyncio.wait_for(self._settled.wait(), timeout)
        return self.status

    async def drain(self):
        """Wait for the session's background work (connect, queries, close) to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def snapshot(self):
        return SessionView(
            payment_id=self.payment_id,
            method=self.method,
            checkout_id=self.checkout_id,
            status=self.status,
            terminal=self.terminal,
            error_message=self.error_message,
            channel_connected=self.channel_connected,
            channel_error=self.channel_error,
            fallback_armed=self.fallback_armed,
            fallback_fired=self.fallback_fired,
            stopped=self.stopped,
            payment=self.payment,
        )

    def _notify(self):
        for callback in list(self._listeners):
            try:
                callback(self)
            except Exception:
                logger.exception(f"Listener failed for payment {self.payment_id}")

    def __repr__(self):
        return f"<TrackingSession {self.payment_id} {self.method.value} {self.status.value}>"


class PaymentStatusTracker:
    """
    Starts and stops tracking sessions.

    ``channel_factory`` is called once per ``start`` and must return a fresh
    ``RealtimeChannel``; the session owns it and closes it when it stops or
    resolves. ``query_client`` is a blocking ``PaymentQueryClient``-like
    object and is always called from a worker thread.

    ``start``, ``stop`` and ``refresh`` must be called from the event loop.
    """

    def __init__(self, query_client, channel_factory, fallback_timeout=DEFAULT_FALLBACK_TIMEOUT):
        self.query_client = query_client
        self.channel_factory = channel_factory
        self.fallback_timeout = fallback_timeout

    def start(self, payment_id: str, method, checkout_id: Optional[str] = None,
              initial_status=None) -> TrackingSession:
        if not payment_id:
            raise ValueError("payment_id is required")

        loop = asyncio.get_running_loop()
        method = PaymentMethod(method)
        known = map_record_status(initial_status)
        status = known.status if known else PaymentStatus.PENDING

        session = TrackingSession(str(payment_id), method, checkout_id or None, status)
        logger.info(f"Tracking payment {session.payment_id} via {method.value}")

        if session.terminal:
            # Already resolved server-side, nothing to listen for
            session._settled.set()
            return session

        if method is PaymentMethod.OTHER:
            # No gateway pushes results for other methods, only the record is fetched
            self._spawn(session, self._refresh(session))
            return session

        channel = self.channel_factory()
        session._channel = channel
        channel.on(CONNECT, partial(self._on_connect, session))
        channel.on(DISCONNECT, partial(self._on_disconnect, session))
        channel.on(CONNECT_ERROR, partial(self._on_connect_error, session))
        channel.on(PAYMENT_UPDATED, partial(self._on_payment_updated, session))
        if method is PaymentMethod.MPESA:
            channel.on(CALLBACK_RECEIVED, partial(self._on_callback, session))

        if method is PaymentMethod.MPESA and session.checkout_id:
            session._timer = loop.call_later(self.fallback_timeout, self._fire_fallback, session)
            session.fallback_armed = True

        self._spawn(session, self._connect(session, channel))
        return session

    def stop(self, session: TrackingSession):
        if session.stopped:
            return

        session.stopped = True
        self._release(session)
        session._settled.set()
        logger.info(f"Stopped tracking payment {session.payment_id} ({session.status.value})")
        session._notify()

    def refresh(self, session: TrackingSession):
        """Re-fetch the payment record; its status applies unless a pushed status is newer."""
        if session.stopped:
            return
        self._spawn(session, self._refresh(session))

    # Status updates

    def _apply(self, session, outcome: Outcome, source: str, pushed=True) -> bool:
        if session.stopped:
            logger.debug(f"Discarding {source} result for stopped payment {session.payment_id}")
            return False
        if session.terminal:
            logger.debug(
                f"Discarding {source} result {outcome.status.value} for payment "
                f"{session.payment_id}, already {session.status.value}"
            )
            return False

        if pushed:
            session.pushed = True
        status, message = outcome
        if status.is_terminal:
            session.status = status
            if status in (PaymentStatus.FAILED, PaymentStatus.CANCELLED):
                session.error_message = message
            logger.info(f"Payment {session.payment_id} resolved as {status.value} via {source}")
            self._release(session)
            session._settled.set()
        elif status is not session.status:
            session.status = status
            logger.info(f"Payment {session.payment_id} is {status.value} via {source}")
        else:
            return False

        session._notify()
        return True

    def _release(self, session):
        if session._timer is not None:
            session._timer.cancel()
            session._timer = None
        session.fallback_armed = False

        channel, session._channel = session._channel, None
        if channel is not None:
            self._spawn(session, self._close_channel(session, channel))

    # Channel

    async def _connect(self, session, channel):
        try:
            await channel.connect()
        except ChannelError as e:
            logger.warning(f"Realtime channel for payment {session.payment_id} failed: {e}")
            if not session.stopped:
                session.channel_connected = False
                session.channel_error = CHANNEL_ERROR_MESSAGE
                session._notify()
            return

        if session._channel is not channel:
            # Stopped or resolved while connecting
            await self._close_channel(session, channel)

    async def _subscribe(self, session, channel):
        try:
            await channel.subscribe(session.payment_id)
        except ChannelError as e:
            logger.warning(f"Could not subscribe to payment {session.payment_id}: {e}")

    async def _close_channel(self, session, channel):
        try:
            await channel.close()
        except ChannelError as e:
            logger.warning(f"Error closing channel for payment {session.payment_id}: {e}")

    def _on_connect(self, session, *args):
        if session.stopped:
            return

        logger.info(f"Channel connected, subscribing to payment {session.payment_id}")
        session.channel_connected = True
        session.channel_error = None
        if session._channel is not None:
            self._spawn(session, self._subscribe(session, session._channel))
            self._spawn(session, self._refresh(session))
        session._notify()

    def _on_disconnect(self, session, *args):
        if session.stopped:
            return
        logger.info(f"Channel disconnected for payment {session.payment_id}")
        session.channel_connected = False
        session._notify()

    def _on_connect_error(self, session, *args):
        if session.stopped:
            return
        logger.warning(f"Channel connection error for payment {session.payment_id}: {args}")
        session.channel_connected = False
        session.channel_error = CHANNEL_ERROR_MESSAGE
        session._notify()

    def _on_callback(self, session, payload=None, *args):
        logger.info(f"M-Pesa callback received for payment {session.payment_id}: {payload}")
        event = parse_callback(payload)
        self._apply(session, map_result_code(event.code, event.message), "callback")

    def _on_payment_updated(self, session, payload=None, *args):
        update = parse_payment_update(payload)
        if update is None or update.payment_id != session.payment_id:
            logger.debug(f"Ignoring payment update not meant for {session.payment_id}: {payload}")
            return

        if session.method is PaymentMethod.PAYSTACK:
            outcome = map_paystack_status(update.status, update.message)
        else:
            outcome = map_record_status(update.status, update.message)
            if outcome is None:
                logger.debug(f"Ignoring unknown status {update.status!r} for {session.payment_id}")
                return

        self._apply(session, outcome, "payment.updated")

    # Payments API

    def _fire_fallback(self, session):
        session._timer = None
        if not session.active:
            session.fallback_armed = False
            return

        session.fallback_fired = True
        logger.info(f"Fallback: querying M-Pesa status for checkout {session.checkout_id}")
        self._spawn(session, self._run_fallback(session))

    async def _run_fallback(self, session):
        try:
            result = await asyncio.to_thread(self.query_client.query_mpesa_status, session.checkout_id)
        except PaymentQueryError as e:
            logger.error(f"Fallback query failed for payment {session.payment_id}: {e}")
            outcome = Outcome(PaymentStatus.FAILED, FALLBACK_FAILURE_MESSAGE)
        else:
            logger.info(f"Fallback query result for payment {session.payment_id}: {result}")
            outcome = map_result_code(result.result_code, result.result_desc)

        session.fallback_armed = False
        if not self._apply(session, outcome, "fallback") and not session.stopped:
            session._notify()

    async def _refresh(self, session):
        try:
            record = await asyncio.to_thread(self.query_client.get_payment, session.payment_id)
        except PaymentQueryError as e:
            logger.warning(f"Could not refresh payment {session.payment_id}: {e}")
            return

        if session.stopped:
            return

        session.payment = record
        outcome = map_record_status(record.status)
        if outcome is not None and session.pushed and not outcome.status.is_terminal:
            # The stored record lags behind what the gateway already pushed
            logger.debug(f"Keeping pushed status {session.status.value} over record {record.status!r}")
            outcome = None
        if outcome is None or not self._apply(session, outcome, "refresh", pushed=False):
            session._notify()

    def _spawn(self, session, coro):
        task = asyncio.get_running_loop().create_task(coro)
        session._tasks.add(task)
        task.add_done_callback(partial(self._task_done, session))
        return task

    def _task_done(self, session, task):
        session._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(
                f"Background task failed for payment {session.payment_id}",
                exc_info=task.exception(),
            )
