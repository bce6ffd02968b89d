"""Stripe provider: signature verification and session mapping."""

import hashlib
import hmac
import json
import time

import pytest
import stripe

from chipledger.services.provider_adapter.service import (
    InvalidSignature,
    ProviderNotConfigured,
    StripeProvider,
)

SECRET = "whsec_test_secret"


def _signed(payload: str, secret: str = SECRET) -> str:
    timestamp = int(time.time())
    digest = hmac.new(secret.encode(), f"{timestamp}.{payload}".encode(), hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"


def test_verify_webhook_accepts_valid_signature():
    provider = StripeProvider("sk_test_x", SECRET)
    payload = json.dumps({"id": "evt_1", "type": "checkout.session.completed", "data": {"object": {}}})

    event = provider.verify_webhook(payload.encode(), _signed(payload))

    assert event["id"] == "evt_1"


def test_verify_webhook_rejects_tampered_body():
    provider = StripeProvider("sk_test_x", SECRET)
    payload = json.dumps({"id": "evt_1"})

    with pytest.raises(InvalidSignature):
        provider.verify_webhook(payload.replace("evt_1", "evt_2").encode(), _signed(payload))
    with pytest.raises(InvalidSignature):
        provider.verify_webhook(payload.encode(), _signed(payload, "whsec_other"))


def test_missing_configuration():
    with pytest.raises(ProviderNotConfigured):
        StripeProvider("sk_test_x", None).verify_webhook(b"{}", "t=1,v1=x")
    with pytest.raises(ProviderNotConfigured):
        StripeProvider("pk_test_publishable", SECRET).retrieve_checkout_session("cs_1")


def test_retrieve_maps_paid_session(monkeypatch):
    def fake_retrieve(session_id, api_key):
        assert api_key == "sk_test_x"
        return {
            "id": session_id,
            "payment_status": "paid",
            "amount_total": 2499,
            "currency": "gbp",
            "metadata": {"purpose": "registration", "userId": "u1"},
        }

    monkeypatch.setattr(stripe.checkout.Session, "retrieve", fake_retrieve)

    status = StripeProvider("sk_test_x", SECRET).retrieve_checkout_session("cs_1")

    assert status.paid is True
    assert status.metadata == {"purpose": "registration", "userId": "u1"}
    assert status.amount_total == 2499


def test_retrieve_unknown_session_is_unpaid(monkeypatch):
    def fake_retrieve(session_id, api_key):
        raise stripe.InvalidRequestError("No such checkout.session", "id")

    monkeypatch.setattr(stripe.checkout.Session, "retrieve", fake_retrieve)

    assert StripeProvider("sk_test_x", SECRET).retrieve_checkout_session("cs_missing").paid is False
