"""Payment confirmation reconciler.

Both confirmation channels (browser return and signed webhook) hand the same
`PaymentConfirmed` message to `PaymentReconciler.reconcile`. It is the only
code that mints paid credits or finalizes a transfer, and it is idempotent on
the external payment reference: whichever channel arrives second finds the
reference taken and exits with `ALREADY_APPLIED` without writing anything.

No in-process locking is used. Exclusion comes from the unique constraints on
`registration_credits.external_payment_reference`,
`transfer_payments.external_payment_reference` and
`transfer_payments.transfer_request_id`, plus a status-guarded UPDATE.
"""

from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import select, update

from chipledger.common.config import settings
from chipledger.common.db import insert_if_absent
from chipledger.common.logging import bound, logger, payment_ref_ctx
from chipledger.common.metrics import (
    confirmations_total,
    credits_granted_total,
    duplicate_confirmations_skipped_total,
    transfer_transitions_total,
)
from chipledger.common.state_machine import ACCEPTED, PENDING, validate_transition
from chipledger.services.accounts.models import User
from chipledger.services.credits.service import AlreadyExists, CreditStore
from chipledger.services.notifications.service import (
    TRANSFERS_COMPLETED,
    stage_credit_granted,
    stage_transfer_event,
)
from chipledger.services.reconciler.messages import REGISTRATION, Outcome, PaymentConfirmed
from chipledger.services.registration.models import Pet
from chipledger.services.transfers.models import TransferPayment, TransferRequest


class PaymentReconciler:
    """Turns one confirmed external payment into exactly one ledger mutation."""

    def __init__(self, session_factory, credits: CreditStore | None = None) -> None:
        self.session_factory = session_factory
        self.credits = credits or CreditStore()

    def reconcile(self, confirmation: PaymentConfirmed) -> Outcome:
        with bound(payment_ref_ctx, confirmation.reference):
            if confirmation.purpose == REGISTRATION:
                outcome = self._reconcile_registration(confirmation)
            else:
                outcome = self._reconcile_transfer(confirmation)

        confirmations_total.labels(
            service=settings.service_name,
            channel=confirmation.channel,
            purpose=confirmation.purpose,
            outcome=outcome.value,
        ).inc()
        if outcome is Outcome.ALREADY_APPLIED:
            duplicate_confirmations_skipped_total.labels(
                service=settings.service_name, channel=confirmation.channel
            ).inc()
        logger.info(
            "confirmation_reconciled reference=%s purpose=%s channel=%s outcome=%s",
            confirmation.reference,
            confirmation.purpose,
            confirmation.channel,
            outcome.value,
        )
        return outcome

    def _reconcile_registration(self, confirmation: PaymentConfirmed) -> Outcome:
        with self.session_factory() as db:
            if db.get(User, confirmation.user_id) is None:
                logger.warning("registration_confirmation_unknown_user user_id=%s", confirmation.user_id)
                return Outcome.NOT_FOUND
            created = self.credits.create_credit(
                db,
                confirmation.user_id,
                confirmation.reference,
                confirmation.amount_pence,
                confirmation.currency,
            )
            if isinstance(created, AlreadyExists):
                return Outcome.ALREADY_APPLIED
            stage_credit_granted(
                db,
                confirmation.user_id,
                created.credit.id,
                source="payment",
                amount_pence=confirmation.amount_pence,
            )
            db.commit()
        credits_granted_total.labels(service=settings.service_name, source="payment").inc()
        return Outcome.APPLIED

    def _reconcile_transfer(self, confirmation: PaymentConfirmed) -> Outcome:
        """Record the payment, accept the request and move the pet in one commit."""

        with self.session_factory() as db:
            transfer = db.get(TransferRequest, confirmation.transfer_request_id)
            if transfer is None:
                return Outcome.NOT_FOUND
            if confirmation.to_user_id and transfer.to_user_id != confirmation.to_user_id:
                logger.warning(
                    "transfer_confirmation_mismatch transfer_id=%s expected_to=%s got_to=%s",
                    transfer.id,
                    transfer.to_user_id,
                    confirmation.to_user_id,
                )
                return Outcome.MISMATCHED
            if transfer.status == ACCEPTED:
                return Outcome.ALREADY_APPLIED
            if transfer.status != PENDING:
                logger.warning(
                    "transfer_paid_after_close transfer_id=%s status=%s", transfer.id, transfer.status
                )
                return Outcome.NOT_PENDING
            already_paid = db.execute(
                select(TransferPayment.id).where(TransferPayment.transfer_request_id == transfer.id)
            ).first()
            if already_paid is not None:
                return Outcome.ALREADY_APPLIED

            validate_transition(transfer.status, ACCEPTED)
            inserted = insert_if_absent(
                db,
                TransferPayment,
                {
                    "id": str(uuid4()),
                    "transfer_request_id": transfer.id,
                    "external_payment_reference": confirmation.reference,
                    "amount_pence": confirmation.amount_pence,
                    "currency": confirmation.currency,
                },
            )
            if not inserted:
                # The other channel committed first.
                db.rollback()
                return Outcome.ALREADY_APPLIED

            accepted = db.execute(
                update(TransferRequest)
                .where(TransferRequest.id == transfer.id, TransferRequest.status == PENDING)
                .values(status=ACCEPTED, updated_at=datetime.now(timezone.utc))
                .execution_options(synchronize_session=False)
            )
            if accepted.rowcount != 1:
                # Rejected between our read and write; keep the ledger untouched.
                db.rollback()
                return Outcome.NOT_PENDING
            db.execute(
                update(Pet)
                .where(Pet.id == transfer.pet_id)
                .values(owner_user_id=transfer.to_user_id, updated_at=datetime.now(timezone.utc))
                .execution_options(synchronize_session=False)
            )
            db.refresh(transfer)
            pet_name = db.execute(select(Pet.name).where(Pet.id == transfer.pet_id)).scalar_one()
            stage_transfer_event(db, TRANSFERS_COMPLETED, transfer, pet_name)
            db.commit()

        transfer_transitions_total.labels(service=settings.service_name, to_state=ACCEPTED).inc()
        logger.info(
            "transfer_completed transfer_id=%s pet_id=%s new_owner=%s",
            transfer.id,
            transfer.pet_id,
            transfer.to_user_id,
        )
        return Outcome.APPLIED
