import logging
from abc import ABC, abstractmethod

import socketio
from socketio import exceptions as socketio_exceptions

from payment_tracker import config
from payment_tracker.exceptions import ChannelError

logger = logging.getLogger(__name__)

CONNECT = "connect"
DISCONNECT = "disconnect"
CONNECT_ERROR = "connect_error"
CALLBACK_RECEIVED = "callback.received"
PAYMENT_UPDATED = "payment.updated"
SUBSCRIBE_TO_PAYMENT = "subscribe-to-payment"


class RealtimeChannel(ABC):
    """One logical push connection, owned by a single tracking session."""

    @abstractmethod
    def on(self, event: str, handler):
        raise NotImplementedError

    @abstractmethod
    async def connect(self):
        raise NotImplementedError

    @abstractmethod
    async def subscribe(self, payment_id: str):
        raise NotImplementedError

    @abstractmethod
    async def close(self):
        raise NotImplementedError


class SocketIOChannel(RealtimeChannel):
    def __init__(self, url, reconnection_attempts=5, reconnection_delay=1, connect_timeout=20,
                 auth_token=None):
        self.url = url
        self.connect_timeout = connect_timeout
        self.auth_token = auth_token
        # Reconnection is left entirely to the socket.io client
        self._client = socketio.AsyncClient(
            reconnection=True,
            reconnection_attempts=reconnection_attempts,
            reconnection_delay=reconnection_delay,
        )

    @classmethod
    def from_config(cls):
        return cls(
            url=config.SOCKET_URL,
            reconnection_attempts=config.SOCKET_RECONNECTION_ATTEMPTS,
            reconnection_delay=config.SOCKET_RECONNECTION_DELAY,
            connect_timeout=config.SOCKET_CONNECT_TIMEOUT,
            auth_token=config.API_ACCESS_TOKEN,
        )

    def on(self, event, handler):
        self._client.on(event, handler)

    async def connect(self):
        headers = {"Authorization": f"Bearer {self.auth_token}"} if self.auth_token else {}
        try:
            await self._client.connect(
                self.url,
                headers=headers,
                transports=["websocket"],
                wait_timeout=self.connect_timeout,
            )
        except socketio_exceptions.ConnectionError as e:
            raise ChannelError(f"Could not connect to {self.url}: {e}") from e

    async def subscribe(self, payment_id):
        try:
            await self._client.emit(SUBSCRIBE_TO_PAYMENT, str(payment_id))
        except socketio_exceptions.SocketIOError as e:
            raise ChannelError(f"Could not subscribe to payment {payment_id}: {e}") from e

    async def close(self):
        # Also aborts a reconnection loop that is still running
        await self._client.disconnect()
        logger.debug(f"Closed socket.io channel to {self.url}")
