"""Registration credit and promo code models.

A credit is a paid (or promo-granted) right to register one microchip. Its
`external_payment_reference` is the dedup key shared by both confirmation
paths; the unique constraint on it is the only lock the ledger needs.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import DateTime, ForeignKey, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column, validates

from chipledger.common.db import Base


@dataclass(frozen=True)
class Available:
    """Credit not yet bound to a pet."""


@dataclass(frozen=True)
class ConsumedBy:
    """Credit spent on the registration of `pet_id`."""

    pet_id: str


CreditState = Available | ConsumedBy


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RegistrationCredit(Base):
    """One right to register a pet, minted once per external payment reference."""

    __tablename__ = "registration_credits"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid4()))
    owner_user_id: Mapped[str] = mapped_column(ForeignKey("users.id"), index=True)
    external_payment_reference: Mapped[str] = mapped_column(String, unique=True)
    amount_pence: Mapped[int] = mapped_column(Integer)
    currency: Mapped[str] = mapped_column(String(3))
    consumed_by_pet_id: Mapped[str | None] = mapped_column(
        ForeignKey("pets.id"), nullable=True, unique=True, index=True
    )
    # Set client-side with microsecond precision; FIFO allocation orders on it.
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    @property
    def state(self) -> CreditState:
        if self.consumed_by_pet_id is None:
            return Available()
        return ConsumedBy(self.consumed_by_pet_id)

    @validates("consumed_by_pet_id")
    def _consume_once(self, _key, pet_id):
        if self.consumed_by_pet_id is not None and pet_id != self.consumed_by_pet_id:
            raise ValueError(f"credit {self.id} already consumed by pet {self.consumed_by_pet_id}")
        return pet_id


class PromoCode(Base):
    """Free-registration code with an optional global usage cap."""

    __tablename__ = "promo_codes"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid4()))
    code: Mapped[str] = mapped_column(String, unique=True, index=True)
    max_uses: Mapped[int | None] = mapped_column(Integer, nullable=True)
    used_count: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    @property
    def exhausted(self) -> bool:
        return self.max_uses is not None and self.used_count >= self.max_uses


def normalize_code(raw: str | None) -> str:
    return (raw or "").strip().upper()
