"""Credit store: mint-once per reference and FIFO consumption."""

from datetime import datetime, timedelta, timezone

import pytest

from chipledger.services.credits.models import Available, ConsumedBy, RegistrationCredit
from chipledger.services.credits.service import AlreadyExists, CreditCreated, CreditStore, NoneAvailable


def _credit(db, user_id, reference, created_at):
    credit = RegistrationCredit(
        owner_user_id=user_id,
        external_payment_reference=reference,
        amount_pence=2499,
        currency="gbp",
        created_at=created_at,
    )
    db.add(credit)
    db.flush()
    return credit


def test_create_credit_is_idempotent_on_reference(session_factory, alice):
    store = CreditStore()
    with session_factory() as db:
        first = store.create_credit(db, alice.id, "cs_test_1", 2499, "GBP")
        second = store.create_credit(db, alice.id, "cs_test_1", 2499, "gbp")
        db.commit()

        assert isinstance(first, CreditCreated)
        assert first.credit.currency == "gbp"
        assert isinstance(second, AlreadyExists)
        assert store.count_available(db, alice.id) == 1


def test_consume_takes_oldest_credit_first(session_factory, alice):
    store = CreditStore()
    now = datetime.now(timezone.utc)
    with session_factory() as db:
        newer = _credit(db, alice.id, "ref-newer", now)
        older = _credit(db, alice.id, "ref-older", now - timedelta(minutes=5))
        db.commit()

        consumed = store.consume_oldest_available(db, alice.id, "pet-1")
        db.commit()

        assert consumed.id == older.id
        assert consumed.state == ConsumedBy("pet-1")
        assert db.get(RegistrationCredit, newer.id).state == Available()
        assert store.count_available(db, alice.id) == 1


def test_consume_without_credits_reports_none_available(session_factory, alice, bob):
    store = CreditStore()
    with session_factory() as db:
        store.create_credit(db, bob.id, "bob-ref", 2499, "gbp")
        db.commit()
        assert store.consume_oldest_available(db, alice.id, "pet-1") == NoneAvailable(alice.id)


def test_consumed_credit_cannot_be_rebound():
    credit = RegistrationCredit(id="c1", consumed_by_pet_id="pet-1")
    with pytest.raises(ValueError):
        credit.consumed_by_pet_id = "pet-2"
