"""Shared fixtures: in-memory SQLite ledger, fake payment provider, auth tokens."""

import json
import os
from dataclasses import replace
from uuid import uuid4

os.environ.setdefault("POSTGRES_DSN", "sqlite+pysqlite:///:memory:")
os.environ.setdefault("JWT_SECRET", "test-jwt-secret")
os.environ.setdefault("OUTBOX_PUBLISHER_ENABLED", "false")
os.environ.setdefault("OTEL_SDK_DISABLED", "true")
os.environ.setdefault("OTEL_EXPORTER_OTLP_ENDPOINT", "")

import jwt
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from chipledger.common.config import settings
from chipledger.common.db import Base
from chipledger.services.accounts.models import User
from chipledger.services.api_gateway.dependencies import get_provider, get_rate_limiter, get_session_factory
from chipledger.services.api_gateway.main import app
from chipledger.services.provider_adapter.service import (
    CheckoutSession,
    InvalidSignature,
    PaymentProvider,
    SessionStatus,
)

VALID_SIGNATURE = "t=1,v1=valid"


class FakeProvider(PaymentProvider):
    """In-memory checkout sessions; the test decides when one is paid."""

    def __init__(self) -> None:
        self.sessions: dict[str, SessionStatus] = {}
        self.created: list[dict] = []

    def create_checkout_session(
        self, amount_pence, currency, success_url, cancel_url, metadata, product_name, description
    ) -> CheckoutSession:
        session_id = f"cs_test_{uuid4().hex[:12]}"
        self.sessions[session_id] = SessionStatus(
            id=session_id, paid=False, metadata=dict(metadata), amount_total=amount_pence, currency=currency
        )
        self.created.append({"id": session_id, "amount_pence": amount_pence, "metadata": dict(metadata)})
        return CheckoutSession(id=session_id, url=f"https://checkout.test/{session_id}")

    def pay(self, session_id: str) -> SessionStatus:
        self.sessions[session_id] = replace(self.sessions[session_id], paid=True)
        return self.sessions[session_id]

    def retrieve_checkout_session(self, session_id: str) -> SessionStatus:
        return self.sessions.get(session_id, SessionStatus(id=session_id, paid=False))

    def verify_webhook(self, raw_body: bytes, signature_header: str) -> dict:
        if signature_header != VALID_SIGNATURE:
            raise InvalidSignature("bad signature")
        return json.loads(raw_body)

    def completed_event(self, session_id: str) -> dict:
        session = self.sessions[session_id]
        return {
            "id": f"evt_{uuid4().hex[:12]}",
            "type": "checkout.session.completed",
            "data": {
                "object": {
                    "id": session.id,
                    "payment_status": "paid" if session.paid else "unpaid",
                    "amount_total": session.amount_total,
                    "currency": session.currency,
                    "metadata": session.metadata,
                }
            },
        }


class AllowAllLimiter:
    def enforce(self, scope: str, subject: str) -> None:
        return None


@pytest.fixture()
def session_factory():
    engine = create_engine(
        "sqlite+pysqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    factory = sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)
    yield factory
    engine.dispose()


@pytest.fixture()
def provider():
    return FakeProvider()


@pytest.fixture()
def client(session_factory, provider):
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_provider] = lambda: provider
    app.dependency_overrides[get_rate_limiter] = lambda: AllowAllLimiter()
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture()
def make_user(session_factory):
    def _make(email: str, role: str = "USER", verified: bool = True) -> User:
        with session_factory() as db:
            user = User(id=str(uuid4()), email=email.lower(), role=role, email_verified=verified, is_active=True)
            db.add(user)
            db.commit()
            return user

    return _make


@pytest.fixture()
def alice(make_user):
    return make_user("alice@example.com")


@pytest.fixture()
def bob(make_user):
    return make_user("bob@example.com")


def auth_headers(user_id: str, role: str = "USER") -> dict[str, str]:
    token = jwt.encode({"userId": user_id, "role": role}, settings.jwt_secret, algorithm="HS256")
    return {"Authorization": f"Bearer {token}"}


def pet_payload(microchip_number: str = "985112345678901", **overrides) -> dict:
    body = {
        "microchipNumber": microchip_number,
        "petName": "Biscuit",
        "species": "dog",
        "breed": "Beagle",
        "color": "Tricolour",
        "sex": "male",
    }
    body.update(overrides)
    return body
