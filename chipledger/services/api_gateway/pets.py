"""Pet registration endpoints, gated by registration credits."""

from fastapi import APIRouter, Depends, HTTPException

from chipledger.services.api_gateway.dependencies import (
    current_user_id,
    get_registration_gate,
    get_transfers,
)
from chipledger.services.api_gateway.responses import (
    DUPLICATE_CHIP,
    PAYMENT_REQUIRED,
    TRANSFER_PENDING,
    VALIDATION_ERROR,
    coded_error,
)
from chipledger.services.registration.schemas import PetCreateRequest, PetResponse
from chipledger.services.registration.service import (
    DuplicateChip,
    InvalidPet,
    PaymentRequired,
    RegistrationGate,
)
from chipledger.services.transfers.schemas import TransferCreateRequest
from chipledger.services.transfers.service import (
    PetNotFound,
    RecipientNotFound,
    SelfTransfer,
    TransferAlreadyPending,
    TransferStateMachine,
)

router = APIRouter(prefix="/api/pets")


@router.get("")
def list_pets(user_id: str = Depends(current_user_id), gate: RegistrationGate = Depends(get_registration_gate)):
    pets = gate.list_pets(user_id)
    return {"pets": [PetResponse.from_pet(pet).model_dump(mode="json", by_alias=True) for pet in pets]}


@router.post("", status_code=201)
def register_pet(
    body: PetCreateRequest,
    user_id: str = Depends(current_user_id),
    gate: RegistrationGate = Depends(get_registration_gate),
):
    result = gate.register_pet(user_id, body)
    if isinstance(result, InvalidPet):
        return coded_error(400, VALIDATION_ERROR, result.message)
    if isinstance(result, DuplicateChip):
        return coded_error(409, DUPLICATE_CHIP, "This microchip number is already registered.")
    if isinstance(result, PaymentRequired):
        return coded_error(402, PAYMENT_REQUIRED, "Payment required. Purchase a registration or redeem a code.")
    pet = PetResponse.from_pet(result.pet).model_dump(mode="json", by_alias=True)
    pet["creditId"] = result.credit_id
    return pet


@router.post("/{pet_id}/transfer")
def request_transfer(
    pet_id: str,
    body: TransferCreateRequest,
    user_id: str = Depends(current_user_id),
    transfers: TransferStateMachine = Depends(get_transfers),
):
    """Owner asks to hand a pet over to another account holder."""

    result = transfers.create(pet_id, user_id, body.new_owner_email)
    if isinstance(result, PetNotFound):
        raise HTTPException(status_code=404, detail="Pet not found.")
    if isinstance(result, RecipientNotFound):
        raise HTTPException(status_code=404, detail="No account found with that email.")
    if isinstance(result, SelfTransfer):
        raise HTTPException(status_code=400, detail="You cannot transfer a pet to yourself.")
    if isinstance(result, TransferAlreadyPending):
        return coded_error(409, TRANSFER_PENDING, "A transfer request for this pet is already pending.")
    return {
        "success": True,
        "message": f"Transfer request sent to {result.recipient_email}.",
        "transferId": result.transfer.id,
        "status": result.transfer.status,
    }
