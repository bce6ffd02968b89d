"""Account rows owned by the auth service.

This service never writes users; it reads them to resolve transfer recipients
and to anchor foreign keys from credits, pets and transfers.
"""

from datetime import datetime
from uuid import uuid4

from sqlalchemy import Boolean, DateTime, String, func, select
from sqlalchemy.orm import Mapped, mapped_column

from chipledger.common.db import Base


class User(Base):
    """Registered account holder."""

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid4()))
    email: Mapped[str] = mapped_column(String, unique=True, index=True)
    first_name: Mapped[str | None] = mapped_column(String, nullable=True)
    last_name: Mapped[str | None] = mapped_column(String, nullable=True)
    role: Mapped[str] = mapped_column(String, default="USER")
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    email_verified: Mapped[bool] = mapped_column(Boolean, default=False)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    @property
    def display_name(self) -> str | None:
        parts = [p for p in (self.first_name, self.last_name) if p]
        return " ".join(parts) if parts else None


def find_transfer_recipient(db, email: str) -> User | None:
    """Return the active, verified, non-deleted account for `email`."""

    return db.execute(
        select(User).where(
            User.email == email.strip().lower(),
            User.deleted_at.is_(None),
            User.is_active.is_(True),
            User.email_verified.is_(True),
        )
    ).scalar_one_or_none()
