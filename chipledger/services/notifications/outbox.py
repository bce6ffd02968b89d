"""Outbox table access for the notification relay.

Rows are staged inside the ledger transaction they describe and move
PENDING -> PROCESSING -> SENT. A failed publish sends the row back to PENDING
until it has failed `MAX_ATTEMPTS` times; it is then parked as FAILED. A
PROCESSING row whose lease has expired can be claimed again.
"""

from datetime import datetime, timedelta, timezone

from sqlalchemy import case, func, or_, select, update

from chipledger.common.events import EventEnvelope
from chipledger.common.logging import trace_id_ctx
from chipledger.common.metrics import outbox_oldest_pending_age_seconds, outbox_pending_total
from chipledger.services.notifications.models import OutboxEvent

PENDING = "PENDING"
PROCESSING = "PROCESSING"
SENT = "SENT"
FAILED = "FAILED"

MAX_ATTEMPTS = 10
LEASE_SECONDS = 30


def stage(db, aggregate_type: str, aggregate_id: str, event_type: str, payload: dict) -> None:
    envelope = EventEnvelope(
        event_type=event_type,
        aggregate_type=aggregate_type,
        aggregate_id=aggregate_id,
        trace_id=trace_id_ctx.get(),
        payload=payload,
    )
    db.add(
        OutboxEvent(
            aggregate_type=aggregate_type,
            aggregate_id=aggregate_id,
            event_type=event_type,
            topic=event_type,
            payload=envelope.model_dump(),
            status=PENDING,
            attempts=0,
        )
    )


def claim_batch(db, limit: int = 100) -> list[OutboxEvent]:
    """Lease up to `limit` publishable rows, oldest first."""

    now = datetime.now(timezone.utc)
    lease_expired = now - timedelta(seconds=LEASE_SECONDS)
    ids = (
        db.execute(
            select(OutboxEvent.id)
            .where(
                or_(
                    OutboxEvent.status == PENDING,
                    (OutboxEvent.status == PROCESSING) & (OutboxEvent.claimed_at < lease_expired),
                )
            )
            .order_by(OutboxEvent.created_at)
            .limit(limit)
            .with_for_update(skip_locked=True)
        )
        .scalars()
        .all()
    )
    if not ids:
        return []
    db.execute(
        update(OutboxEvent)
        .where(OutboxEvent.id.in_(ids))
        .values(status=PROCESSING, claimed_at=now)
        .execution_options(synchronize_session=False)
    )
    return list(
        db.execute(select(OutboxEvent).where(OutboxEvent.id.in_(ids)).order_by(OutboxEvent.created_at)).scalars()
    )


def mark_sent(db, event_id: str) -> None:
    db.execute(
        update(OutboxEvent)
        .where(OutboxEvent.id == event_id, OutboxEvent.status == PROCESSING)
        .values(status=SENT, sent_at=datetime.now(timezone.utc))
        .execution_options(synchronize_session=False)
    )


def release(db, event_id: str, error: str) -> None:
    """Give a claimed row back after a failed publish, parking it once attempts run out."""

    db.execute(
        update(OutboxEvent)
        .where(OutboxEvent.id == event_id, OutboxEvent.status == PROCESSING)
        .values(
            attempts=OutboxEvent.attempts + 1,
            last_error=error[:500],
            claimed_at=None,
            status=case((OutboxEvent.attempts + 1 >= MAX_ATTEMPTS, FAILED), else_=PENDING),
        )
        .execution_options(synchronize_session=False)
    )


def record_backlog(db, service_name: str) -> None:
    undelivered = (PENDING, PROCESSING)
    count, oldest = db.execute(
        select(func.count(), func.min(OutboxEvent.created_at)).where(OutboxEvent.status.in_(undelivered))
    ).one()
    age_seconds = 0.0
    if oldest is not None:
        if oldest.tzinfo is None:
            oldest = oldest.replace(tzinfo=timezone.utc)
        age_seconds = max(0.0, (datetime.now(timezone.utc) - oldest).total_seconds())
    outbox_pending_total.labels(service=service_name).set(float(count))
    outbox_oldest_pending_age_seconds.labels(service=service_name).set(age_seconds)
