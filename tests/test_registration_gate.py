"""Registration gate: one pet per credit, nothing written on refusal."""

from sqlalchemy import func, select

from chipledger.services.credits.models import RegistrationCredit
from chipledger.services.credits.service import CreditStore
from chipledger.services.registration.models import Pet
from chipledger.services.registration.schemas import PetCreateRequest
from chipledger.services.registration.service import (
    DuplicateChip,
    InvalidPet,
    PaymentRequired,
    Registered,
    RegistrationGate,
)

from conftest import pet_payload


def _grant(session_factory, user_id, reference):
    with session_factory() as db:
        CreditStore().create_credit(db, user_id, reference, 2499, "gbp")
        db.commit()


def _pet_count(session_factory):
    with session_factory() as db:
        return db.execute(select(func.count()).select_from(Pet)).scalar_one()


def test_register_consumes_one_credit(session_factory, alice):
    _grant(session_factory, alice.id, "cs_1")
    gate = RegistrationGate(session_factory)

    result = gate.register_pet(alice.id, PetCreateRequest(**pet_payload("012*345*678")))

    assert isinstance(result, Registered)
    assert result.pet.microchip_number == "012345678"
    with session_factory() as db:
        credit = db.get(RegistrationCredit, result.credit_id)
    assert credit.consumed_by_pet_id == result.pet.id


def test_without_credit_payment_is_required(session_factory, alice):
    gate = RegistrationGate(session_factory)

    result = gate.register_pet(alice.id, PetCreateRequest(**pet_payload()))

    assert result == PaymentRequired(alice.id)
    assert _pet_count(session_factory) == 0


def test_duplicate_chip_keeps_the_credit(session_factory, alice, bob):
    _grant(session_factory, alice.id, "cs_a")
    _grant(session_factory, bob.id, "cs_b")
    gate = RegistrationGate(session_factory)
    gate.register_pet(alice.id, PetCreateRequest(**pet_payload("985112345678901")))

    result = gate.register_pet(bob.id, PetCreateRequest(**pet_payload(" 985112345678901 ")))

    assert isinstance(result, DuplicateChip)
    with session_factory() as db:
        assert CreditStore().count_available(db, bob.id) == 1


def test_bad_chip_is_rejected_before_the_ledger(session_factory, alice):
    _grant(session_factory, alice.id, "cs_1")
    gate = RegistrationGate(session_factory)

    result = gate.register_pet(alice.id, PetCreateRequest(**pet_payload("12345")))

    assert isinstance(result, InvalidPet)
    with session_factory() as db:
        assert CreditStore().count_available(db, alice.id) == 1


def test_two_credits_register_exactly_two_pets(session_factory, alice):
    _grant(session_factory, alice.id, "cs_1")
    _grant(session_factory, alice.id, "cs_2")
    gate = RegistrationGate(session_factory)

    results = [
        gate.register_pet(alice.id, PetCreateRequest(**pet_payload(chip)))
        for chip in ("985112345678901", "985112345678902", "985112345678903")
    ]

    assert [type(r) for r in results] == [Registered, Registered, PaymentRequired]
    assert _pet_count(session_factory) == 2
    assert [p.name for p in gate.list_pets(alice.id)] == ["Biscuit", "Biscuit"]
