import pytest

from payment_tracker.channel import RealtimeChannel
from payment_tracker.exceptions import ChannelError
from payment_tracker.models import MpesaStatusResult, PaymentRecord
from payment_tracker.tracker import PaymentStatusTracker


class FakeChannel(RealtimeChannel):
    """In-memory channel: connects instantly, then replays any scripted events."""

    def __init__(self, connect_error=False, script=()):
        self.connect_error = connect_error
        self.script = list(script)
        self.handlers = {}
        self.subscribed = []
        self.close_calls = 0

    def on(self, event, handler):
        self.handlers[event] = handler

    async def connect(self):
        if self.connect_error:
            self.fire("connect_error", "refused")
            raise ChannelError("refused")
        self.fire("connect")
        for event, payload in self.script:
            self.fire(event, payload)

    async def subscribe(self, payment_id):
        self.subscribed.append(payment_id)

    async def close(self):
        self.close_calls += 1

    @property
    def closed(self):
        return self.close_calls > 0

    def fire(self, event, *args):
        handler = self.handlers.get(event)
        if handler is not None:
            handler(*args)


@pytest.fixture
def channel_options():
    return {}


@pytest.fixture
def channels():
    return []


@pytest.fixture
def channel_factory(channels, channel_options):
    def factory():
        channel = FakeChannel(**channel_options)
        channels.append(channel)
        return channel
    return factory


@pytest.fixture
def query_client(mocker):
    client = mocker.Mock()
    client.get_payment.return_value = PaymentRecord(id="p1", status="pending", amount=1500, currency="KES")
    client.query_mpesa_status.return_value = MpesaStatusResult(result_code=9999)
    return client


@pytest.fixture
def tracker(query_client, channel_factory):
    # Long enough that the fallback never fires unless a test waits for it
    return PaymentStatusTracker(query_client, channel_factory, fallback_timeout=5)


@pytest.fixture
def fast_tracker(query_client, channel_factory):
    return PaymentStatusTracker(query_client, channel_factory, fallback_timeout=0.01)
