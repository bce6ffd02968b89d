"""Registration gate: a pet row exists only if exactly one credit paid for it."""

from dataclasses import dataclass
from uuid import uuid4

from sqlalchemy import select

from chipledger.common.config import settings
from chipledger.common.db import insert_if_absent
from chipledger.common.logging import logger
from chipledger.common.metrics import credits_consumed_total, payment_required_total
from chipledger.services.credits.service import CreditStore, NoneAvailable
from chipledger.services.registration.microchip import MicrochipFormatError, validate_microchip
from chipledger.services.registration.models import Pet
from chipledger.services.registration.schemas import PetCreateRequest


@dataclass(frozen=True)
class Registered:
    pet: Pet
    credit_id: str


@dataclass(frozen=True)
class PaymentRequired:
    user_id: str


@dataclass(frozen=True)
class DuplicateChip:
    microchip_number: str


@dataclass(frozen=True)
class InvalidPet:
    message: str


class RegistrationGate:
    """Creates pets, consuming the owner's oldest credit in the same commit."""

    def __init__(self, session_factory, credits: CreditStore | None = None) -> None:
        self.session_factory = session_factory
        self.credits = credits or CreditStore()

    def _chip_taken(self, db, microchip_number: str) -> bool:
        return db.execute(select(Pet.id).where(Pet.microchip_number == microchip_number)).first() is not None

    def list_pets(self, user_id: str) -> list[Pet]:
        with self.session_factory() as db:
            return list(
                db.execute(
                    select(Pet).where(Pet.owner_user_id == user_id).order_by(Pet.created_at.desc())
                ).scalars()
            )

    def register_pet(
        self, user_id: str, attrs: PetCreateRequest
    ) -> Registered | PaymentRequired | DuplicateChip | InvalidPet:
        """Validate, then consume one credit and insert the pet atomically.

        Cheap side-effect-free checks run first so a doomed request never
        touches the ledger. The pre-check on the chip number is advisory; the
        unique index decides races between two registrations of one chip.
        """

        try:
            microchip_number = validate_microchip(attrs.microchip_number)
        except MicrochipFormatError as exc:
            return InvalidPet(str(exc))

        with self.session_factory() as db:
            if self._chip_taken(db, microchip_number):
                return DuplicateChip(microchip_number)
            if self.credits.count_available(db, user_id) == 0:
                payment_required_total.labels(service=settings.service_name, purpose="registration").inc()
                return PaymentRequired(user_id)

            pet_id = str(uuid4())
            inserted = insert_if_absent(
                db,
                Pet,
                {
                    "id": pet_id,
                    "owner_user_id": user_id,
                    "microchip_number": microchip_number,
                    "name": attrs.name,
                    "species": attrs.species,
                    "breed": attrs.breed,
                    "color": attrs.color,
                    "sex": attrs.sex,
                    "neutered": attrs.neutered,
                    "date_of_birth": attrs.date_of_birth,
                    "notes": attrs.notes,
                    "status": "active",
                },
            )
            if not inserted:
                db.rollback()
                return DuplicateChip(microchip_number)

            consumed = self.credits.consume_oldest_available(db, user_id, pet_id)
            if isinstance(consumed, NoneAvailable):
                # Another registration spent the last credit first; drop our pet row.
                db.rollback()
                payment_required_total.labels(service=settings.service_name, purpose="registration").inc()
                return PaymentRequired(user_id)

            db.commit()
            pet = db.get(Pet, pet_id)

        credits_consumed_total.labels(service=settings.service_name).inc()
        logger.info("pet_registered pet_id=%s user_id=%s credit_id=%s", pet_id, user_id, consumed.id)
        return Registered(pet, consumed.id)
