"""
NATS Event Bus Unit Tests

The JetStream context is replaced by an in-memory fake.
"""
import json
from decimal import Decimal

import pytest
from nats.js.errors import Error as JetStreamError

from core.config_manager import ConfigManager
from core.nats_client import DecimalEncoder, Event, EventType, NATSEventBus, ServiceSource

pytestmark = pytest.mark.unit


class FakeAck:
    seq = 1


class FakeJetStream:

    def __init__(self, stream_exists: bool = False):
        self.streams = []
        self.published = []
        self.stream_exists = stream_exists

    async def add_stream(self, name, subjects):
        if self.stream_exists:
            raise JetStreamError()
        self.streams.append((name, subjects))

    async def publish(self, subject, payload, stream=None):
        self.published.append((subject, payload, stream))
        return FakeAck()


class FakeConnection:
    is_connected = True


def _bus(js: FakeJetStream) -> NATSEventBus:
    bus = NATSEventBus("withdrawal_service", config=ConfigManager("withdrawal_service"))
    bus._nc = FakeConnection()
    bus._js = js
    return bus


def _event() -> Event:
    return Event(
        event_type=EventType.WITHDRAWAL_TOKEN_REDEEMED,
        source=ServiceSource.WITHDRAWAL_SERVICE,
        data={"token_id": "wtok_1", "amount": 30_000, "commission": Decimal("300")},
        subject="wtok_1",
    )


async def test_publish_uses_event_type_as_subject():
    js = FakeJetStream()
    bus = _bus(js)

    assert await bus.publish_event(_event()) is True

    [(subject, payload, stream)] = js.published
    assert subject == "withdrawal.token.redeemed"
    assert stream == "withdrawal-stream"
    assert js.streams == [("withdrawal-stream", ["withdrawal.>"])]

    decoded = Event.from_dict(json.loads(payload))
    assert decoded.type == "withdrawal.token.redeemed"
    assert decoded.source == "withdrawal_service"
    assert decoded.data["commission"] == 300.0


async def test_stream_created_once():
    js = FakeJetStream()
    bus = _bus(js)

    await bus.publish_event(_event())
    await bus.publish_event(_event())

    assert len(js.streams) == 1
    assert len(js.published) == 2


async def test_existing_stream_is_tolerated():
    js = FakeJetStream(stream_exists=True)
    bus = _bus(js)

    assert await bus.publish_event(_event()) is True


async def test_not_connected():
    bus = NATSEventBus("withdrawal_service", config=ConfigManager("withdrawal_service"))

    assert bus.is_connected is False
    assert await bus.publish_event(_event()) is False


def test_decimal_encoder():
    assert json.dumps({"fee": Decimal("2.5")}, cls=DecimalEncoder) == '{"fee": 2.5}'
