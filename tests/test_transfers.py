"""Transfer state machine: single pending request per pet, payment-gated accept."""

from sqlalchemy import select

from chipledger.common.state_machine import PENDING, REJECTED
from chipledger.services.notifications.models import OutboxEvent
from chipledger.services.registration.models import Pet
from chipledger.services.transfers.service import (
    NeedsPayment,
    NotPending,
    NotRecipient,
    PayableTransfer,
    PetNotFound,
    RecipientNotFound,
    Rejected,
    SelfTransfer,
    TransferAlreadyPending,
    TransferCreated,
    TransferStateMachine,
)


def _pet(session_factory, owner_id, chip="985112345678901"):
    with session_factory() as db:
        pet = Pet(
            owner_user_id=owner_id,
            microchip_number=chip,
            name="Biscuit",
            species="dog",
            breed="Beagle",
            color="Tricolour",
            sex="male",
        )
        db.add(pet)
        db.commit()
        return pet.id


def test_create_then_duplicate_is_refused(session_factory, alice, bob):
    pet_id = _pet(session_factory, alice.id)
    transfers = TransferStateMachine(session_factory)

    created = transfers.create(pet_id, alice.id, " BOB@example.com ")
    again = transfers.create(pet_id, alice.id, "bob@example.com")

    assert isinstance(created, TransferCreated)
    assert created.transfer.status == PENDING
    assert again == TransferAlreadyPending(pet_id)
    with session_factory() as db:
        assert db.execute(select(OutboxEvent.event_type)).scalars().all() == ["transfers.requested"]


def test_create_guards(session_factory, alice, bob, make_user):
    pet_id = _pet(session_factory, alice.id)
    unverified = make_user("ghost@example.com", verified=False)
    transfers = TransferStateMachine(session_factory)

    assert isinstance(transfers.create(pet_id, bob.id, "alice@example.com"), PetNotFound)
    assert isinstance(transfers.create(pet_id, alice.id, "nobody@example.com"), RecipientNotFound)
    assert isinstance(transfers.create(pet_id, alice.id, unverified.email), RecipientNotFound)
    assert isinstance(transfers.create(pet_id, alice.id, "alice@example.com"), SelfTransfer)


def test_accept_asks_for_payment_without_changing_state(session_factory, alice, bob):
    pet_id = _pet(session_factory, alice.id)
    transfers = TransferStateMachine(session_factory)
    transfer_id = transfers.create(pet_id, alice.id, bob.email).transfer.id

    assert transfers.respond(transfer_id, bob.id, "accept") == NeedsPayment(transfer_id)
    assert isinstance(transfers.payable(transfer_id, bob.id), PayableTransfer)
    assert isinstance(transfers.respond(transfer_id, alice.id, "accept"), NotRecipient)


def test_reject_is_terminal_and_frees_the_pet(session_factory, alice, bob):
    pet_id = _pet(session_factory, alice.id)
    transfers = TransferStateMachine(session_factory)
    transfer_id = transfers.create(pet_id, alice.id, bob.email).transfer.id

    rejected = transfers.respond(transfer_id, bob.id, "reject")

    assert isinstance(rejected, Rejected)
    assert rejected.transfer.status == REJECTED
    assert transfers.respond(transfer_id, bob.id, "reject") == NotPending(transfer_id, REJECTED)
    assert isinstance(transfers.create(pet_id, alice.id, bob.email), TransferCreated)


def test_list_for_user_splits_incoming_and_outgoing(session_factory, alice, bob):
    pet_id = _pet(session_factory, alice.id)
    transfers = TransferStateMachine(session_factory)
    transfers.create(pet_id, alice.id, bob.email)

    assert [t["petId"] for t in transfers.list_for_user(bob.id)["incoming"]] == [pet_id]
    assert transfers.list_for_user(bob.id)["outgoing"] == []
    assert [t["toEmail"] for t in transfers.list_for_user(alice.id)["outgoing"]] == [bob.email]
