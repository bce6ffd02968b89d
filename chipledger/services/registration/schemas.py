"""API request/response schemas for pet registration."""

from datetime import date, datetime
from typing import Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


Species = Literal["dog", "cat", "rabbit", "ferret", "other"]
Sex = Literal["male", "female"]


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class PetCreateRequest(CamelModel):
    """Pet attributes accepted by `POST /api/pets`."""

    microchip_number: str = Field(min_length=1)
    name: str = Field(min_length=1, validation_alias=AliasChoices("petName", "name"))
    species: Species
    breed: str = Field(min_length=1)
    color: str = Field(min_length=1)
    sex: Sex
    neutered: bool = False
    date_of_birth: date | None = None
    notes: str | None = None

    @field_validator("microchip_number", "name", "breed", "color", mode="before")
    @classmethod
    def _strip(cls, value):
        return value.strip() if isinstance(value, str) else value

    @field_validator("species", "sex", mode="before")
    @classmethod
    def _lower(cls, value):
        return value.strip().lower() if isinstance(value, str) else value

    @field_validator("notes", mode="before")
    @classmethod
    def _blank_notes(cls, value):
        if isinstance(value, str):
            return value.strip() or None
        return value


class PetResponse(CamelModel):
    id: str
    microchip_number: str
    name: str
    species: str
    breed: str
    color: str
    sex: str
    neutered: bool
    date_of_birth: date | None
    notes: str | None
    status: str
    owner_user_id: str
    created_at: datetime | None = None

    @classmethod
    def from_pet(cls, pet) -> "PetResponse":
        return cls(
            id=pet.id,
            microchip_number=pet.microchip_number,
            name=pet.name,
            species=pet.species,
            breed=pet.breed,
            color=pet.color,
            sex=pet.sex,
            neutered=pet.neutered,
            date_of_birth=pet.date_of_birth,
            notes=pet.notes,
            status=pet.status,
            owner_user_id=pet.owner_user_id,
            created_at=pet.created_at,
        )
