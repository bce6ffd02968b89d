"""API request schemas for ownership transfer endpoints."""

from typing import Literal

from pydantic import Field

from chipledger.services.registration.schemas import CamelModel


class TransferCreateRequest(CamelModel):
    new_owner_email: str = Field(min_length=1)


class TransferActionRequest(CamelModel):
    action: Literal["accept", "reject"]


class TransferCheckoutRequest(CamelModel):
    transfer_request_id: str = Field(min_length=1)
