"""Payment reconciler: each external reference applies at most once."""

from sqlalchemy import select

from chipledger.common.state_machine import ACCEPTED, PENDING, REJECTED
from chipledger.services.credits.service import CreditStore
from chipledger.services.notifications.models import OutboxEvent
from chipledger.services.reconciler.messages import (
    REGISTRATION,
    RETURN_CHANNEL,
    TRANSFER,
    WEBHOOK_CHANNEL,
    Outcome,
    PaymentConfirmed,
)
from chipledger.services.reconciler.service import PaymentReconciler
from chipledger.services.registration.models import Pet
from chipledger.services.transfers.models import TransferPayment, TransferRequest


def _registration(reference, user_id, channel=RETURN_CHANNEL):
    return PaymentConfirmed(
        reference=reference,
        purpose=REGISTRATION,
        channel=channel,
        amount_pence=2499,
        currency="gbp",
        user_id=user_id,
    )


def _transfer(reference, transfer_id, to_user_id, channel=WEBHOOK_CHANNEL):
    return PaymentConfirmed(
        reference=reference,
        purpose=TRANSFER,
        channel=channel,
        amount_pence=2499,
        currency="gbp",
        user_id=to_user_id,
        transfer_request_id=transfer_id,
        to_user_id=to_user_id,
    )


def _pending_transfer(session_factory, owner, recipient, status=PENDING):
    with session_factory() as db:
        pet = Pet(
            owner_user_id=owner.id,
            microchip_number="985112345678901",
            name="Biscuit",
            species="dog",
            breed="Beagle",
            color="Tricolour",
            sex="male",
        )
        db.add(pet)
        db.flush()
        transfer = TransferRequest(pet_id=pet.id, from_user_id=owner.id, to_user_id=recipient.id, status=status)
        db.add(transfer)
        db.commit()
        return pet.id, transfer.id


def test_both_channels_mint_a_single_credit(session_factory, alice):
    reconciler = PaymentReconciler(session_factory)

    first = reconciler.reconcile(_registration("cs_1", alice.id, RETURN_CHANNEL))
    second = reconciler.reconcile(_registration("cs_1", alice.id, WEBHOOK_CHANNEL))

    assert (first, second) == (Outcome.APPLIED, Outcome.ALREADY_APPLIED)
    with session_factory() as db:
        assert CreditStore().count_available(db, alice.id) == 1
        assert db.execute(select(OutboxEvent.event_type)).scalars().all() == ["credits.granted"]


def test_registration_for_unknown_user_is_not_found(session_factory):
    outcome = PaymentReconciler(session_factory).reconcile(_registration("cs_1", "ghost"))
    assert outcome is Outcome.NOT_FOUND


def test_transfer_payment_moves_the_pet_once(session_factory, alice, bob):
    pet_id, transfer_id = _pending_transfer(session_factory, alice, bob)
    reconciler = PaymentReconciler(session_factory)

    first = reconciler.reconcile(_transfer("cs_t", transfer_id, bob.id, RETURN_CHANNEL))
    second = reconciler.reconcile(_transfer("cs_t", transfer_id, bob.id, WEBHOOK_CHANNEL))

    assert (first, second) == (Outcome.APPLIED, Outcome.ALREADY_APPLIED)
    with session_factory() as db:
        assert db.get(Pet, pet_id).owner_user_id == bob.id
        assert db.get(TransferRequest, transfer_id).status == ACCEPTED
        payments = db.execute(select(TransferPayment)).scalars().all()
        events = db.execute(select(OutboxEvent.event_type)).scalars().all()
    assert [p.external_payment_reference for p in payments] == ["cs_t"]
    assert events == ["transfers.completed"]


def test_second_session_for_paid_transfer_is_already_applied(session_factory, alice, bob):
    _, transfer_id = _pending_transfer(session_factory, alice, bob)
    reconciler = PaymentReconciler(session_factory)
    reconciler.reconcile(_transfer("cs_first", transfer_id, bob.id))

    outcome = reconciler.reconcile(_transfer("cs_second", transfer_id, bob.id))

    assert outcome is Outcome.ALREADY_APPLIED
    with session_factory() as db:
        assert len(db.execute(select(TransferPayment)).all()) == 1


def test_payment_after_rejection_changes_nothing(session_factory, alice, bob):
    pet_id, transfer_id = _pending_transfer(session_factory, alice, bob, status=REJECTED)

    outcome = PaymentReconciler(session_factory).reconcile(_transfer("cs_late", transfer_id, bob.id))

    assert outcome is Outcome.NOT_PENDING
    with session_factory() as db:
        assert db.get(Pet, pet_id).owner_user_id == alice.id
        assert db.execute(select(TransferPayment)).first() is None


def test_transfer_confirmation_for_wrong_recipient(session_factory, alice, bob, make_user):
    carol = make_user("carol@example.com")
    _, transfer_id = _pending_transfer(session_factory, alice, bob)

    outcome = PaymentReconciler(session_factory).reconcile(_transfer("cs_x", transfer_id, carol.id))

    assert outcome is Outcome.MISMATCHED


def test_unknown_transfer_is_not_found(session_factory, bob):
    outcome = PaymentReconciler(session_factory).reconcile(_transfer("cs_x", "missing", bob.id))
    assert outcome is Outcome.NOT_FOUND
