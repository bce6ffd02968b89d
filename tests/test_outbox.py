"""Outbox events commit with the ledger write and drain to the bus."""

import asyncio

from sqlalchemy import select, update

from chipledger.services.notifications import outbox
from chipledger.services.notifications.models import OutboxEvent
from chipledger.services.notifications.service import OutboxPublisher
from chipledger.services.promo.service import PromoRedemption


class RecordingBus:
    def __init__(self, fail=False):
        self.sent = []
        self.fail = fail

    async def publish(self, topic, event):
        if self.fail:
            raise RuntimeError("broker down")
        self.sent.append((topic, event))

    async def close(self):
        return None


def _publisher(session_factory, bus):
    publisher = OutboxPublisher(session_factory, "chipledger-test")
    publisher.kafka = bus
    return publisher


def _redeem_once(session_factory, user_id):
    promo = PromoRedemption(session_factory)
    promo.create("WELCOME", None)
    promo.redeem("WELCOME", user_id)


def _row(session_factory):
    with session_factory() as db:
        return db.execute(select(OutboxEvent)).scalar_one()


def test_pending_events_are_published_and_marked_sent(session_factory, alice):
    _redeem_once(session_factory, alice.id)
    bus = RecordingBus()

    delivered = asyncio.run(_publisher(session_factory, bus).publish_pending())

    assert delivered == 1
    topic, event = bus.sent[0]
    assert topic == "credits.granted"
    assert event.aggregate_type == "credit"
    assert event.payload["user_id"] == alice.id
    assert _row(session_factory).status == outbox.SENT


def test_failed_publish_is_released_for_retry(session_factory, alice):
    _redeem_once(session_factory, alice.id)

    asyncio.run(_publisher(session_factory, RecordingBus(fail=True)).publish_pending())

    row = _row(session_factory)
    assert (row.status, row.attempts, row.last_error) == (outbox.PENDING, 1, "broker down")


def test_row_is_parked_after_max_attempts(session_factory, alice):
    _redeem_once(session_factory, alice.id)
    with session_factory() as db:
        db.execute(update(OutboxEvent).values(attempts=outbox.MAX_ATTEMPTS - 1))
        db.commit()

    asyncio.run(_publisher(session_factory, RecordingBus(fail=True)).publish_pending())

    assert _row(session_factory).status == outbox.FAILED
    assert asyncio.run(_publisher(session_factory, RecordingBus()).publish_pending()) == 0
