"""Promo redemption: capped counter and zero-amount credit in one commit."""

import pytest
from sqlalchemy import select

from chipledger.services.credits.models import PromoCode, RegistrationCredit
from chipledger.services.notifications.models import OutboxEvent
from chipledger.services.promo import service as promo_service
from chipledger.services.promo.service import (
    InvalidCode,
    LimitReached,
    PromoCreated,
    PromoExists,
    PromoRedemption,
    Redeemed,
)


def test_redeem_mints_zero_amount_credit(session_factory, alice):
    promo = PromoRedemption(session_factory)
    assert isinstance(promo.create(" launch ", 2), PromoCreated)

    result = promo.redeem("LAUNCH", alice.id)

    assert isinstance(result, Redeemed)
    assert result.new_used_count == 1
    assert result.available_credits == 1
    assert result.credit.amount_pence == 0
    assert result.credit.external_payment_reference.startswith("PROMO-")
    with session_factory() as db:
        events = db.execute(select(OutboxEvent.event_type)).scalars().all()
    assert events == ["credits.granted"]


def test_cap_is_enforced_across_users(session_factory, alice, bob):
    promo = PromoRedemption(session_factory)
    promo.create("ONCE", 1)

    assert isinstance(promo.redeem("once", alice.id), Redeemed)
    assert isinstance(promo.redeem("once", bob.id), LimitReached)

    with session_factory() as db:
        code = db.execute(select(PromoCode).where(PromoCode.code == "ONCE")).scalar_one()
        credits = db.execute(select(RegistrationCredit)).scalars().all()
    assert code.used_count == 1
    assert [c.owner_user_id for c in credits] == [alice.id]


def test_unknown_code_changes_nothing(session_factory, alice):
    promo = PromoRedemption(session_factory)

    assert isinstance(promo.redeem("NOPE", alice.id), InvalidCode)
    assert isinstance(promo.redeem("", alice.id), InvalidCode)
    with session_factory() as db:
        assert db.execute(select(RegistrationCredit)).first() is None


def test_unlimited_code_and_duplicate_creation(session_factory, alice):
    promo = PromoRedemption(session_factory)
    created = promo.create("FREE", 0)

    assert created.promo.max_uses is None
    assert isinstance(promo.create("free", 5), PromoExists)
    for _ in range(3):
        assert isinstance(promo.redeem("FREE", alice.id), Redeemed)
    assert isinstance(promo.validate("FREE"), PromoCode)


def test_failure_after_counter_update_rolls_back_everything(session_factory, alice, monkeypatch):
    promo = PromoRedemption(session_factory)
    promo.create("ONCE", 1)

    def broken_stage(*args, **kwargs):
        raise RuntimeError("outbox write failed")

    monkeypatch.setattr(promo_service, "stage_credit_granted", broken_stage)
    with pytest.raises(RuntimeError):
        promo.redeem("ONCE", alice.id)

    with session_factory() as db:
        assert db.execute(select(PromoCode.used_count).where(PromoCode.code == "ONCE")).scalar_one() == 0
        assert db.execute(select(RegistrationCredit)).first() is None
        assert db.execute(select(OutboxEvent)).first() is None

    monkeypatch.undo()
    assert isinstance(promo.redeem("ONCE", alice.id), Redeemed)
