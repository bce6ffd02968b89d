"""Thin adapters from each confirmation channel to `PaymentConfirmed`.

Neither adapter decides anything about the ledger. They only turn a session the
provider reports as paid into the shared message.
"""

from typing import Any

from chipledger.common.config import settings
from chipledger.services.provider_adapter.service import SessionStatus, session_status_from_object
from chipledger.services.reconciler.messages import (
    REGISTRATION,
    RETURN_CHANNEL,
    TRANSFER,
    WEBHOOK_CHANNEL,
    MalformedConfirmation,
    PaymentConfirmed,
)

# Event types that carry a checkout session which may now be paid.
PAID_SESSION_EVENTS = {"checkout.session.completed", "checkout.session.async_payment_succeeded"}


def purpose_of(metadata: dict[str, str]) -> str:
    # Early registration sessions carried only `userId`.
    purpose = metadata.get("purpose") or metadata.get("type") or REGISTRATION
    if purpose not in (REGISTRATION, TRANSFER):
        raise MalformedConfirmation(f"unknown purpose {purpose!r}")
    return purpose


def build_metadata(purpose: str, user_id: str, transfer_request_id: str | None = None) -> dict[str, str]:
    """Metadata attached to a checkout session so either channel can rebuild the event."""

    metadata = {"purpose": purpose, "userId": user_id}
    if purpose == TRANSFER:
        metadata["transferRequestId"] = transfer_request_id or ""
        metadata["toUserId"] = user_id
    return metadata


def confirmation_from_session(status: SessionStatus, channel: str = RETURN_CHANNEL) -> PaymentConfirmed:
    """Build the message for a session already known to be paid."""

    if not status.id:
        raise MalformedConfirmation("session has no id")
    metadata = status.metadata
    purpose = purpose_of(metadata)
    currency = (status.currency or settings.currency).lower()
    if purpose == REGISTRATION:
        user_id = metadata.get("userId")
        if not user_id:
            raise MalformedConfirmation("registration session missing userId")
        amount = status.amount_total if status.amount_total is not None else settings.registration_price_pence
        return PaymentConfirmed(
            reference=status.id,
            purpose=REGISTRATION,
            channel=channel,
            amount_pence=amount,
            currency=currency,
            user_id=user_id,
        )

    transfer_request_id = metadata.get("transferRequestId")
    to_user_id = metadata.get("toUserId")
    if not transfer_request_id or not to_user_id:
        raise MalformedConfirmation("transfer session missing transferRequestId or toUserId")
    amount = status.amount_total if status.amount_total is not None else settings.effective_transfer_fee_pence
    return PaymentConfirmed(
        reference=status.id,
        purpose=TRANSFER,
        channel=channel,
        amount_pence=amount,
        currency=currency,
        user_id=to_user_id,
        transfer_request_id=transfer_request_id,
        to_user_id=to_user_id,
    )


def confirmation_from_event(event: dict[str, Any]) -> PaymentConfirmed | None:
    """Map a verified webhook event; None when there is nothing to reconcile."""

    if event.get("type") not in PAID_SESSION_EVENTS:
        return None
    session = (event.get("data") or {}).get("object")
    if not isinstance(session, dict):
        raise MalformedConfirmation("event has no session object")
    status = session_status_from_object(session)
    if not status.paid:
        # Delayed payment methods complete unpaid; async_payment_succeeded follows.
        return None
    return confirmation_from_session(status, channel=WEBHOOK_CHANNEL)
