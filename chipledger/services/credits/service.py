"""Credit store: count, mint-once, and FIFO consumption of registration credits.

Every method takes the caller's open session so that the write lands in the
caller's transaction (registration, promo redemption, reconciliation).
"""

from dataclasses import dataclass
from uuid import uuid4

from sqlalchemy import func, select, update

from chipledger.common.db import insert_if_absent
from chipledger.common.logging import logger
from chipledger.services.credits.models import RegistrationCredit, utcnow


@dataclass(frozen=True)
class CreditCreated:
    credit: RegistrationCredit


@dataclass(frozen=True)
class AlreadyExists:
    external_payment_reference: str


@dataclass(frozen=True)
class NoneAvailable:
    user_id: str


class CreditStore:
    """Durable record of purchased-but-unconsumed registration rights."""

    # Bounded retries when a concurrent request wins the same oldest credit.
    consume_attempts = 3

    def count_available(self, db, user_id: str) -> int:
        return db.execute(
            select(func.count())
            .select_from(RegistrationCredit)
            .where(
                RegistrationCredit.owner_user_id == user_id,
                RegistrationCredit.consumed_by_pet_id.is_(None),
            )
        ).scalar_one()

    def create_credit(
        self,
        db,
        user_id: str,
        external_payment_reference: str,
        amount_pence: int,
        currency: str,
    ) -> CreditCreated | AlreadyExists:
        """Mint a credit unless this payment reference already has one."""

        values = {
            "id": str(uuid4()),
            "owner_user_id": user_id,
            "external_payment_reference": external_payment_reference,
            "amount_pence": amount_pence,
            "currency": currency.lower(),
            "consumed_by_pet_id": None,
            "created_at": utcnow(),
        }
        if not insert_if_absent(db, RegistrationCredit, values):
            logger.info("credit_exists reference=%s", external_payment_reference)
            return AlreadyExists(external_payment_reference)
        return CreditCreated(db.get(RegistrationCredit, values["id"]))

    def oldest_available(self, db, user_id: str) -> RegistrationCredit | None:
        return db.execute(
            select(RegistrationCredit)
            .where(
                RegistrationCredit.owner_user_id == user_id,
                RegistrationCredit.consumed_by_pet_id.is_(None),
            )
            .order_by(RegistrationCredit.created_at, RegistrationCredit.id)
            .limit(1)
            .with_for_update(skip_locked=True)
        ).scalar_one_or_none()

    def consume_oldest_available(self, db, user_id: str, pet_id: str) -> RegistrationCredit | NoneAvailable:
        """Bind the user's oldest available credit to `pet_id`.

        The bind is a compare-and-swap on `consumed_by_pet_id IS NULL`, so two
        requests racing for the same credit cannot both win it.
        """

        for _ in range(self.consume_attempts):
            credit = self.oldest_available(db, user_id)
            if credit is None:
                return NoneAvailable(user_id)
            result = db.execute(
                update(RegistrationCredit)
                .where(
                    RegistrationCredit.id == credit.id,
                    RegistrationCredit.consumed_by_pet_id.is_(None),
                )
                .values(consumed_by_pet_id=pet_id)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 1:
                db.refresh(credit)
                return credit
            logger.info("credit_consume_lost_race credit_id=%s user_id=%s", credit.id, user_id)
            db.expire(credit)
        return NoneAvailable(user_id)
