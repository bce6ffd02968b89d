"""Transfer state machine: create, reject, and the payment-gated accept.

Accepting never changes state here. The recipient is always sent to pay, and
`pending -> accepted` happens only when the reconciler applies the confirmed
transfer payment, so "accept" and "pay" are one event.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import select, update

from chipledger.common.config import settings
from chipledger.common.db import insert_if_absent
from chipledger.common.logging import logger
from chipledger.common.metrics import payment_required_total, transfer_transitions_total
from chipledger.common.state_machine import PENDING, REJECTED, validate_transition
from chipledger.services.accounts.models import User, find_transfer_recipient
from chipledger.services.notifications.service import (
    TRANSFERS_REJECTED,
    TRANSFERS_REQUESTED,
    stage_transfer_event,
)
from chipledger.services.registration.models import Pet
from chipledger.services.transfers.models import TransferPayment, TransferRequest


@dataclass(frozen=True)
class TransferCreated:
    transfer: TransferRequest
    recipient_email: str


@dataclass(frozen=True)
class PetNotFound:
    pet_id: str


@dataclass(frozen=True)
class RecipientNotFound:
    email: str


@dataclass(frozen=True)
class SelfTransfer:
    user_id: str


@dataclass(frozen=True)
class TransferAlreadyPending:
    pet_id: str


@dataclass(frozen=True)
class TransferNotFound:
    transfer_id: str


@dataclass(frozen=True)
class NotRecipient:
    transfer_id: str


@dataclass(frozen=True)
class NotPending:
    transfer_id: str
    status: str


@dataclass(frozen=True)
class AlreadyPaid:
    transfer_id: str


@dataclass(frozen=True)
class Rejected:
    transfer: TransferRequest


@dataclass(frozen=True)
class NeedsPayment:
    transfer_request_id: str


@dataclass(frozen=True)
class PayableTransfer:
    transfer: TransferRequest
    pet_name: str


class TransferStateMachine:
    """Owner- and recipient-facing transitions of `TransferRequest`."""

    def __init__(self, session_factory) -> None:
        self.session_factory = session_factory

    def create(
        self, pet_id: str, owner_user_id: str, recipient_email: str | None
    ) -> TransferCreated | PetNotFound | RecipientNotFound | SelfTransfer | TransferAlreadyPending:
        email = (recipient_email or "").strip().lower()
        with self.session_factory() as db:
            pet = db.execute(
                select(Pet).where(Pet.id == pet_id, Pet.owner_user_id == owner_user_id)
            ).scalar_one_or_none()
            if pet is None:
                return PetNotFound(pet_id)
            recipient = find_transfer_recipient(db, email) if email else None
            if recipient is None:
                return RecipientNotFound(email)
            if recipient.id == owner_user_id:
                return SelfTransfer(owner_user_id)

            transfer_id = str(uuid4())
            inserted = insert_if_absent(
                db,
                TransferRequest,
                {
                    "id": transfer_id,
                    "pet_id": pet.id,
                    "from_user_id": owner_user_id,
                    "to_user_id": recipient.id,
                    "status": PENDING,
                },
            )
            if not inserted:
                return TransferAlreadyPending(pet.id)
            transfer = db.get(TransferRequest, transfer_id)
            stage_transfer_event(db, TRANSFERS_REQUESTED, transfer, pet.name)
            db.commit()

        transfer_transitions_total.labels(service=settings.service_name, to_state=PENDING).inc()
        logger.info(
            "transfer_requested transfer_id=%s pet_id=%s from=%s to=%s",
            transfer_id,
            pet_id,
            owner_user_id,
            recipient.id,
        )
        return TransferCreated(transfer, email)

    def _load_for_recipient(self, db, transfer_id: str, user_id: str):
        transfer = db.get(TransferRequest, transfer_id)
        if transfer is None:
            return TransferNotFound(transfer_id)
        if transfer.to_user_id != user_id:
            return NotRecipient(transfer_id)
        if transfer.status != PENDING:
            return NotPending(transfer_id, transfer.status)
        return transfer

    def respond(
        self, transfer_id: str, user_id: str, action: str
    ) -> Rejected | NeedsPayment | TransferNotFound | NotRecipient | NotPending:
        """Apply the recipient's accept/reject decision."""

        with self.session_factory() as db:
            loaded = self._load_for_recipient(db, transfer_id, user_id)
            if not isinstance(loaded, TransferRequest):
                return loaded
            transfer = loaded

            if action == "accept":
                payment_required_total.labels(service=settings.service_name, purpose="transfer").inc()
                return NeedsPayment(transfer.id)

            validate_transition(transfer.status, REJECTED)
            result = db.execute(
                update(TransferRequest)
                .where(TransferRequest.id == transfer.id, TransferRequest.status == PENDING)
                .values(status=REJECTED, updated_at=datetime.now(timezone.utc))
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                # Payment confirmation accepted it between our read and write.
                db.rollback()
                db.refresh(transfer)
                return NotPending(transfer.id, transfer.status)
            db.refresh(transfer)
            pet_name = db.execute(select(Pet.name).where(Pet.id == transfer.pet_id)).scalar_one()
            stage_transfer_event(db, TRANSFERS_REJECTED, transfer, pet_name)
            db.commit()

        transfer_transitions_total.labels(service=settings.service_name, to_state=REJECTED).inc()
        logger.info("transfer_rejected transfer_id=%s by=%s", transfer_id, user_id)
        return Rejected(transfer)

    def payable(
        self, transfer_id: str, user_id: str
    ) -> PayableTransfer | TransferNotFound | NotRecipient | NotPending | AlreadyPaid:
        """Check that the caller may start a checkout for this transfer."""

        with self.session_factory() as db:
            loaded = self._load_for_recipient(db, transfer_id, user_id)
            if not isinstance(loaded, TransferRequest):
                return loaded
            paid = db.execute(
                select(TransferPayment.id).where(TransferPayment.transfer_request_id == transfer_id)
            ).first()
            if paid is not None:
                return AlreadyPaid(transfer_id)
            pet_name = db.execute(select(Pet.name).where(Pet.id == loaded.pet_id)).scalar_one()
            return PayableTransfer(loaded, pet_name)

    def list_for_user(self, user_id: str) -> dict[str, list[dict]]:
        """Incoming pending requests and outgoing pending/rejected ones."""

        with self.session_factory() as db:
            incoming_rows = db.execute(
                select(TransferRequest, Pet, User)
                .join(Pet, Pet.id == TransferRequest.pet_id)
                .join(User, User.id == TransferRequest.from_user_id)
                .where(TransferRequest.to_user_id == user_id, TransferRequest.status == PENDING)
                .order_by(TransferRequest.created_at.desc())
            ).all()
            outgoing_rows = db.execute(
                select(TransferRequest, Pet, User)
                .join(Pet, Pet.id == TransferRequest.pet_id)
                .join(User, User.id == TransferRequest.to_user_id)
                .where(
                    TransferRequest.from_user_id == user_id,
                    TransferRequest.status.in_([PENDING, REJECTED]),
                )
                .order_by(TransferRequest.created_at.desc())
            ).all()

        incoming = [
            {
                "id": transfer.id,
                "petId": pet.id,
                "petName": pet.name,
                "microchipNumber": pet.microchip_number,
                "species": pet.species,
                "fromEmail": sender.email,
                "fromName": sender.display_name,
                "status": transfer.status,
                "createdAt": transfer.created_at.isoformat() if transfer.created_at else None,
            }
            for transfer, pet, sender in incoming_rows
        ]
        outgoing = [
            {
                "id": transfer.id,
                "petId": pet.id,
                "petName": pet.name,
                "microchipNumber": pet.microchip_number,
                "toEmail": recipient.email,
                "status": transfer.status,
                "createdAt": transfer.created_at.isoformat() if transfer.created_at else None,
                "updatedAt": transfer.updated_at.isoformat() if transfer.updated_at else None,
            }
            for transfer, pet, recipient in outgoing_rows
        ]
        return {"incoming": incoming, "outgoing": outgoing}
