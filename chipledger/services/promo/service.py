"""Promo redemption: a free credit mint bounded by a global usage cap."""

from dataclasses import dataclass
from uuid import uuid4

from sqlalchemy import select, update

from chipledger.common.config import settings
from chipledger.common.db import insert_if_absent
from chipledger.common.logging import logger
from chipledger.common.metrics import credits_granted_total, promo_redemptions_total
from chipledger.services.credits.models import PromoCode, RegistrationCredit, normalize_code, utcnow
from chipledger.services.credits.service import AlreadyExists, CreditStore
from chipledger.services.notifications.service import stage_credit_granted


@dataclass(frozen=True)
class Redeemed:
    credit: RegistrationCredit
    new_used_count: int
    available_credits: int


@dataclass(frozen=True)
class InvalidCode:
    code: str


@dataclass(frozen=True)
class LimitReached:
    code: str


@dataclass(frozen=True)
class PromoCreated:
    promo: PromoCode


@dataclass(frozen=True)
class PromoExists:
    code: str


class PromoRedemption:
    """Validates and redeems promo codes against the credit store."""

    def __init__(self, session_factory, credits: CreditStore | None = None) -> None:
        self.session_factory = session_factory
        self.credits = credits or CreditStore()

    def _lookup(self, db, code: str) -> PromoCode | None:
        if not code:
            return None
        return db.execute(select(PromoCode).where(PromoCode.code == code)).scalar_one_or_none()

    def validate(self, raw_code: str | None) -> PromoCode | InvalidCode | LimitReached:
        """Read-only check used by the checkout page before redeeming."""

        code = normalize_code(raw_code)
        with self.session_factory() as db:
            promo = self._lookup(db, code)
            if promo is None:
                return InvalidCode(code)
            if promo.exhausted:
                return LimitReached(code)
            return promo

    def redeem(self, raw_code: str | None, user_id: str) -> Redeemed | InvalidCode | LimitReached:
        """Increment the usage counter and mint a zero-amount credit together.

        The cap is re-checked inside the UPDATE, so concurrent redemptions of the
        last use cannot both pass. The counter and the credit share a single
        commit.
        """

        code = normalize_code(raw_code)
        with self.session_factory() as db:
            promo = self._lookup(db, code)
            if promo is None:
                promo_redemptions_total.labels(service=settings.service_name, outcome="invalid").inc()
                return InvalidCode(code)
            if promo.exhausted:
                promo_redemptions_total.labels(service=settings.service_name, outcome="limit_reached").inc()
                return LimitReached(code)

            claimed = db.execute(
                update(PromoCode)
                .where(
                    PromoCode.id == promo.id,
                    (PromoCode.max_uses.is_(None)) | (PromoCode.used_count < PromoCode.max_uses),
                )
                .values(used_count=PromoCode.used_count + 1)
                .execution_options(synchronize_session=False)
            )
            if claimed.rowcount != 1:
                db.rollback()
                promo_redemptions_total.labels(service=settings.service_name, outcome="limit_reached").inc()
                return LimitReached(code)

            reference = f"PROMO-{promo.id}-{uuid4()}"
            created = self.credits.create_credit(db, user_id, reference, 0, settings.currency)
            if isinstance(created, AlreadyExists):
                # A fresh uuid4 reference cannot collide; treat it as a storage fault.
                db.rollback()
                raise RuntimeError(f"synthetic promo reference collided: {reference}")
            stage_credit_granted(db, user_id, created.credit.id, source="promo", amount_pence=0)
            new_used_count = db.execute(select(PromoCode.used_count).where(PromoCode.id == promo.id)).scalar_one()
            available = self.credits.count_available(db, user_id)
            db.commit()

        credits_granted_total.labels(service=settings.service_name, source="promo").inc()
        promo_redemptions_total.labels(service=settings.service_name, outcome="redeemed").inc()
        logger.info("promo_redeemed code=%s user_id=%s used_count=%s", code, user_id, new_used_count)
        return Redeemed(created.credit, new_used_count, available)

    def create(self, raw_code: str | None, max_uses: int | None) -> PromoCreated | PromoExists | InvalidCode:
        """Admin creation of a new promo code; non-positive caps mean unlimited."""

        code = normalize_code(raw_code)
        if not code:
            return InvalidCode(code)
        cap = max_uses if max_uses is not None and max_uses > 0 else None
        promo_id = str(uuid4())
        with self.session_factory() as db:
            inserted = insert_if_absent(
                db,
                PromoCode,
                {"id": promo_id, "code": code, "max_uses": cap, "used_count": 0, "created_at": utcnow()},
            )
            if not inserted:
                return PromoExists(code)
            db.commit()
            promo = db.get(PromoCode, promo_id)
        logger.info("promo_created code=%s max_uses=%s", code, cap)
        return PromoCreated(promo)
