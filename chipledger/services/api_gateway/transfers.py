"""Recipient-facing transfer endpoints."""

from fastapi import APIRouter, Depends, HTTPException

from chipledger.services.api_gateway.dependencies import current_user_id, get_transfers
from chipledger.services.api_gateway.responses import NEED_PAYMENT, NOT_PENDING, coded_error
from chipledger.services.transfers.schemas import TransferActionRequest
from chipledger.services.transfers.service import (
    NeedsPayment,
    NotPending,
    NotRecipient,
    TransferNotFound,
    TransferStateMachine,
)

router = APIRouter(prefix="/api/transfers")


@router.get("")
def list_transfers(user_id: str = Depends(current_user_id), transfers: TransferStateMachine = Depends(get_transfers)):
    return transfers.list_for_user(user_id)


@router.patch("/{transfer_id}")
def respond_to_transfer(
    transfer_id: str,
    body: TransferActionRequest,
    user_id: str = Depends(current_user_id),
    transfers: TransferStateMachine = Depends(get_transfers),
):
    """Reject outright, or answer "accept" with a pointer to the payment step."""

    result = transfers.respond(transfer_id, user_id, body.action)
    if isinstance(result, TransferNotFound):
        raise HTTPException(status_code=404, detail="Transfer request not found.")
    if isinstance(result, NotRecipient):
        raise HTTPException(status_code=403, detail="You are not the recipient of this transfer.")
    if isinstance(result, NotPending):
        return coded_error(400, NOT_PENDING, f"This request was already {result.status}.")
    if isinstance(result, NeedsPayment):
        return coded_error(
            400,
            NEED_PAYMENT,
            "Payment required to accept this transfer.",
            needPayment=True,
            transferRequestId=result.transfer_request_id,
        )
    return {"success": True, "message": "Transfer rejected.", "status": result.transfer.status}
