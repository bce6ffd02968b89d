"""Transfer request and transfer payment models.

`uq_transfer_requests_pending_pet` is a partial unique index: it admits any
number of terminal requests per pet but only one `pending` one, which is what
closes the race between two simultaneous transfer creations.
"""

from datetime import datetime
from uuid import uuid4

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, func, text
from sqlalchemy.orm import Mapped, mapped_column

from chipledger.common.db import Base
from chipledger.common.state_machine import PENDING


class TransferRequest(Base):
    """A pet's pending or settled change of ownership."""

    __tablename__ = "transfer_requests"
    __table_args__ = (
        Index(
            "uq_transfer_requests_pending_pet",
            "pet_id",
            unique=True,
            postgresql_where=text("status = 'pending'"),
            sqlite_where=text("status = 'pending'"),
        ),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid4()))
    pet_id: Mapped[str] = mapped_column(ForeignKey("pets.id"), index=True)
    from_user_id: Mapped[str] = mapped_column(ForeignKey("users.id"), index=True)
    to_user_id: Mapped[str] = mapped_column(ForeignKey("users.id"), index=True)
    status: Mapped[str] = mapped_column(String, default=PENDING, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class TransferPayment(Base):
    """The fee that accepted a transfer; at most one per request."""

    __tablename__ = "transfer_payments"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid4()))
    transfer_request_id: Mapped[str] = mapped_column(ForeignKey("transfer_requests.id"), unique=True)
    external_payment_reference: Mapped[str] = mapped_column(String, unique=True)
    amount_pence: Mapped[int] = mapped_column(Integer)
    currency: Mapped[str] = mapped_column(String(3))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
