"""The single internal message both confirmation channels reduce to."""

from dataclasses import dataclass
from enum import Enum


REGISTRATION = "registration"
TRANSFER = "transfer"

RETURN_CHANNEL = "return"
WEBHOOK_CHANNEL = "webhook"
ZERO_FEE_CHANNEL = "zero_fee"


class MalformedConfirmation(ValueError):
    """A verified payment whose metadata cannot be mapped to a ledger action."""


class Outcome(str, Enum):
    APPLIED = "applied"
    ALREADY_APPLIED = "already_applied"
    NOT_FOUND = "not_found"
    NOT_PENDING = "not_pending"
    MISMATCHED = "mismatched"

    @property
    def succeeded(self) -> bool:
        return self in (Outcome.APPLIED, Outcome.ALREADY_APPLIED)


@dataclass(frozen=True)
class PaymentConfirmed:
    """A payment the provider has vouched for, keyed by its dedup reference."""

    reference: str
    purpose: str
    channel: str
    amount_pence: int
    currency: str
    user_id: str | None = None
    transfer_request_id: str | None = None
    to_user_id: str | None = None
