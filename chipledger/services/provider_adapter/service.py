"""Payment provider capability and its Stripe Checkout implementation.

The ledger consumes exactly three things from the provider: create a checkout
session, retrieve one to ask whether it was paid, and verify a signed webhook.
Every call is bounded by `PROVIDER_TIMEOUT_SECONDS`; a failed or timed-out call
raises `ProviderError` before any ledger write is attempted.
"""

import json
from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

import stripe

from chipledger.common.config import settings
from chipledger.common.logging import logger
from chipledger.common.tracing import provider_call


class ProviderError(Exception):
    """The provider could not be reached or rejected the call."""


class ProviderNotConfigured(ProviderError):
    pass


class InvalidSignature(Exception):
    """Webhook payload could not be authenticated."""


@dataclass(frozen=True)
class CheckoutSession:
    id: str
    url: str


@dataclass(frozen=True)
class SessionStatus:
    id: str
    paid: bool
    metadata: dict[str, str] = field(default_factory=dict)
    amount_total: int | None = None
    currency: str | None = None


class PaymentProvider(ABC):
    @abstractmethod
    def create_checkout_session(
        self,
        amount_pence: int,
        currency: str,
        success_url: str,
        cancel_url: str,
        metadata: dict[str, str],
        product_name: str,
        description: str,
    ) -> CheckoutSession: ...

    @abstractmethod
    def retrieve_checkout_session(self, session_id: str) -> SessionStatus: ...

    @abstractmethod
    def verify_webhook(self, raw_body: bytes, signature_header: str) -> dict[str, Any]: ...


def _field(obj: Any, name: str) -> Any:
    if isinstance(obj, Mapping):
        return obj.get(name)
    return getattr(obj, name, None)


def session_status_from_object(obj: Any) -> SessionStatus:
    """Read the fields the ledger relies on from a checkout session object."""

    metadata = _field(obj, "metadata") or {}
    if not isinstance(metadata, Mapping):
        metadata = metadata.to_dict()
    return SessionStatus(
        id=_field(obj, "id") or "",
        paid=_field(obj, "payment_status") == "paid",
        metadata={str(k): str(v) for k, v in metadata.items()},
        amount_total=_field(obj, "amount_total"),
        currency=_field(obj, "currency"),
    )


class StripeProvider(PaymentProvider):
    """Stripe Checkout backed provider."""

    def __init__(
        self,
        secret_key: str | None,
        webhook_secret: str | None,
        timeout_seconds: float = 10.0,
        service_name: str = "chipledger-api",
    ) -> None:
        self.secret_key = (secret_key or "").strip()
        self.webhook_secret = (webhook_secret or "").strip()
        self.service_name = service_name
        # Stripe's own retries stay off so the timeout is a real upper bound.
        stripe.default_http_client = stripe.RequestsClient(timeout=timeout_seconds)
        stripe.max_network_retries = 0

    def _require_key(self) -> str:
        if not self.secret_key:
            raise ProviderNotConfigured("Stripe is not configured.")
        if not self.secret_key.startswith(("sk_", "rk_")):
            raise ProviderNotConfigured(
                "Invalid Stripe key: use a secret key (sk_test_ or sk_live_), not the publishable key."
            )
        return self.secret_key

    def create_checkout_session(
        self,
        amount_pence: int,
        currency: str,
        success_url: str,
        cancel_url: str,
        metadata: dict[str, str],
        product_name: str,
        description: str,
    ) -> CheckoutSession:
        api_key = self._require_key()
        with provider_call("create", self.service_name):
            try:
                session = stripe.checkout.Session.create(
                    api_key=api_key,
                    mode="payment",
                    payment_method_types=["card"],
                    line_items=[
                        {
                            "price_data": {
                                "currency": currency,
                                "unit_amount": amount_pence,
                                "product_data": {"name": product_name, "description": description},
                            },
                            "quantity": 1,
                        }
                    ],
                    metadata=metadata,
                    success_url=success_url,
                    cancel_url=cancel_url,
                )
            except stripe.StripeError as exc:
                logger.error("checkout_create_failed error_type=%s error=%s", type(exc).__name__, exc)
                raise ProviderError(str(exc)) from exc
        url = _field(session, "url")
        if not url:
            raise ProviderError("Failed to create checkout session.")
        return CheckoutSession(id=_field(session, "id"), url=url)

    def retrieve_checkout_session(self, session_id: str) -> SessionStatus:
        api_key = self._require_key()
        with provider_call("retrieve", self.service_name) as span:
            span.set_attribute("checkout.session_id", session_id)
            try:
                session = stripe.checkout.Session.retrieve(session_id, api_key=api_key)
            except stripe.InvalidRequestError as exc:
                # Unknown session ids are the caller's problem, not an outage.
                logger.warning("checkout_session_unknown session_id=%s error=%s", session_id, exc)
                return SessionStatus(id=session_id, paid=False)
            except stripe.StripeError as exc:
                logger.error("checkout_retrieve_failed session_id=%s error=%s", session_id, exc)
                raise ProviderError(str(exc)) from exc
        return session_status_from_object(session)

    def verify_webhook(self, raw_body: bytes, signature_header: str) -> dict[str, Any]:
        """Check the `Stripe-Signature` header before parsing anything."""

        if not self.webhook_secret:
            raise ProviderNotConfigured("Webhook not configured.")
        try:
            payload = raw_body.decode("utf-8")
            stripe.WebhookSignature.verify_header(payload, signature_header, self.webhook_secret)
            event = json.loads(payload)
        except stripe.SignatureVerificationError as exc:
            raise InvalidSignature(str(exc)) from exc
        except (UnicodeDecodeError, ValueError) as exc:
            raise InvalidSignature(f"unparseable payload: {exc}") from exc
        if not isinstance(event, dict):
            raise InvalidSignature("event payload is not an object")
        return event


def build_provider() -> StripeProvider:
    return StripeProvider(
        secret_key=settings.stripe_secret_key,
        webhook_secret=settings.stripe_webhook_secret,
        timeout_seconds=settings.provider_timeout_seconds,
        service_name=settings.service_name,
    )
