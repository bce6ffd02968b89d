"""Notification events: staged in the ledger transaction, relayed to Kafka."""

import asyncio

from chipledger.common.events import EventEnvelope, KafkaBus
from chipledger.common.logging import logger
from chipledger.services.notifications import outbox


CREDITS_GRANTED = "credits.granted"
TRANSFERS_REQUESTED = "transfers.requested"
TRANSFERS_REJECTED = "transfers.rejected"
TRANSFERS_COMPLETED = "transfers.completed"


def stage_credit_granted(db, user_id: str, credit_id: str, source: str, amount_pence: int) -> None:
    outbox.stage(
        db,
        aggregate_type="credit",
        aggregate_id=credit_id,
        event_type=CREDITS_GRANTED,
        payload={"user_id": user_id, "source": source, "amount_pence": amount_pence},
    )


def stage_transfer_event(db, event_type: str, transfer, pet_name: str) -> None:
    outbox.stage(
        db,
        aggregate_type="transfer",
        aggregate_id=transfer.id,
        event_type=event_type,
        payload={
            "pet_id": transfer.pet_id,
            "pet_name": pet_name,
            "from_user_id": transfer.from_user_id,
            "to_user_id": transfer.to_user_id,
            "status": transfer.status,
        },
    )


class OutboxPublisher:
    """Drains `outbox_events` to Kafka for the external email service."""

    def __init__(self, session_factory, service_name: str, poll_interval: float = 0.5) -> None:
        self.session_factory = session_factory
        self.kafka = KafkaBus()
        self.service_name = service_name
        self.poll_interval = poll_interval

    async def publish_pending(self) -> int:
        """Publish one leased batch; returns how many rows were delivered."""

        with self.session_factory() as db:
            rows = outbox.claim_batch(db)
            outbox.record_backlog(db, self.service_name)
            db.commit()

        delivered = 0
        for row in rows:
            try:
                await self.kafka.publish(row.topic, EventEnvelope(**row.payload))
            except Exception as exc:
                logger.warning("outbox_publish_failed event_id=%s topic=%s error=%s", row.id, row.topic, exc)
                with self.session_factory() as db:
                    outbox.release(db, row.id, str(exc))
                    db.commit()
                continue
            with self.session_factory() as db:
                outbox.mark_sent(db, row.id)
                db.commit()
            delivered += 1
        return delivered

    async def run_forever(self) -> None:
        while True:
            try:
                await self.publish_pending()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("outbox_loop_error")
            await asyncio.sleep(self.poll_interval)

    async def close(self) -> None:
        await self.kafka.close()
