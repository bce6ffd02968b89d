"""Checkout, confirmation, promo and webhook endpoints.

The two confirmation endpoints (`confirm-*-session` and `webhook`) each
establish "payment is confirmed" on their own terms, build the same
`PaymentConfirmed` message, and delegate to the reconciler.
"""

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel
from starlette.concurrency import run_in_threadpool

from chipledger.common.config import settings
from chipledger.common.logging import bound, event_id_ctx, logger
from chipledger.common.metrics import confirmations_rejected_total
from chipledger.services.api_gateway.dependencies import (
    current_user_id,
    get_promo,
    get_provider,
    get_rate_limiter,
    get_reconciler,
    get_session_factory,
    get_transfers,
)
from chipledger.services.api_gateway.responses import (
    ALREADY_PAID,
    INVALID_CODE,
    LIMIT_REACHED,
    NOT_PENDING,
    coded_error,
)
from chipledger.services.credits.service import CreditStore
from chipledger.services.promo.service import InvalidCode, LimitReached, PromoRedemption
from chipledger.services.provider_adapter.service import (
    InvalidSignature,
    PaymentProvider,
    ProviderNotConfigured,
)
from chipledger.services.reconciler.adapters import (
    build_metadata,
    confirmation_from_event,
    confirmation_from_session,
    purpose_of,
)
from chipledger.services.reconciler.messages import (
    REGISTRATION,
    TRANSFER,
    ZERO_FEE_CHANNEL,
    Outcome,
    PaymentConfirmed,
)
from chipledger.services.reconciler.service import PaymentReconciler
from chipledger.services.transfers.schemas import TransferCheckoutRequest
from chipledger.services.transfers.service import (
    AlreadyPaid,
    NotPending,
    NotRecipient,
    TransferNotFound,
    TransferStateMachine,
)

router = APIRouter()


class PromoCodeRequest(BaseModel):
    code: str | None = None


def _frontend(path: str) -> str:
    return f"{settings.frontend_url.rstrip('/')}{path}"


def _reject(channel: str, reason: str) -> None:
    confirmations_rejected_total.labels(service=settings.service_name, channel=channel, reason=reason).inc()


def _count_credits(session_factory, user_id: str) -> int:
    with session_factory() as db:
        return CreditStore().count_available(db, user_id)


@router.get("/api/payments/credits")
def get_credits(user_id: str = Depends(current_user_id), session_factory=Depends(get_session_factory)):
    """Number of unconsumed registration credits for the caller."""

    return {"credits": _count_credits(session_factory, user_id)}


@router.post("/api/payments/create-checkout-session")
def create_checkout_session(
    user_id: str = Depends(current_user_id),
    provider: PaymentProvider = Depends(get_provider),
):
    session = provider.create_checkout_session(
        amount_pence=settings.registration_price_pence,
        currency=settings.currency,
        success_url=_frontend("/register?payment=success&session_id={CHECKOUT_SESSION_ID}"),
        cancel_url=_frontend("/register?payment=cancelled"),
        metadata=build_metadata(REGISTRATION, user_id),
        product_name="Microchip registration",
        description="Register one microchip and keep your pet's details up to date for life.",
    )
    logger.info("checkout_created purpose=registration user_id=%s session_id=%s", user_id, session.id)
    return {"url": session.url}


@router.get("/api/payments/confirm-session")
def confirm_session(
    session_id: str | None = None,
    user_id: str = Depends(current_user_id),
    provider: PaymentProvider = Depends(get_provider),
    reconciler: PaymentReconciler = Depends(get_reconciler),
    session_factory=Depends(get_session_factory),
):
    """Return path for registration checkout: ask the provider, then reconcile."""

    session_id = (session_id or "").strip()
    if not session_id:
        raise HTTPException(status_code=400, detail="Missing session_id.")
    status = provider.retrieve_checkout_session(session_id)
    if not status.paid:
        _reject("return", "not_paid")
        raise HTTPException(status_code=400, detail="Payment not completed.")
    if purpose_of(status.metadata) != REGISTRATION or status.metadata.get("userId") != user_id:
        _reject("return", "owner_mismatch")
        raise HTTPException(status_code=403, detail="Session does not belong to this user.")

    outcome = reconciler.reconcile(confirmation_from_session(status))
    if not outcome.succeeded:
        raise HTTPException(status_code=404, detail="Account not found.")
    return {"credited": True, "credits": _count_credits(session_factory, user_id)}


@router.post("/api/payments/redeem-promo")
def redeem_promo(
    body: PromoCodeRequest,
    user_id: str = Depends(current_user_id),
    promo: PromoRedemption = Depends(get_promo),
    limiter=Depends(get_rate_limiter),
):
    limiter.enforce("redeem-promo", user_id)
    if not (body.code or "").strip():
        return coded_error(400, INVALID_CODE, "Please enter a code.")
    result = promo.redeem(body.code, user_id)
    if isinstance(result, InvalidCode):
        return coded_error(400, INVALID_CODE, "Invalid or expired code.")
    if isinstance(result, LimitReached):
        return coded_error(400, LIMIT_REACHED, "This code has reached its use limit.")
    return {
        "success": True,
        "message": "Code applied! You have one free registration.",
        "credits": result.available_credits,
        "usedCount": result.new_used_count,
    }


@router.post("/api/promo/validate")
def validate_promo(
    body: PromoCodeRequest,
    request: Request,
    promo: PromoRedemption = Depends(get_promo),
    limiter=Depends(get_rate_limiter),
):
    """Check a code without redeeming it (no authentication required)."""

    limiter.enforce("validate-promo", request.client.host if request.client else "unknown")
    if not (body.code or "").strip():
        return coded_error(400, INVALID_CODE, "Please enter a code.", valid=False)
    result = promo.validate(body.code)
    if isinstance(result, InvalidCode):
        return coded_error(400, INVALID_CODE, "Invalid or expired code.", valid=False)
    if isinstance(result, LimitReached):
        return coded_error(400, LIMIT_REACHED, "This code has reached its use limit.", valid=False)
    return {"valid": True}


@router.post("/api/payments/create-transfer-checkout-session")
def create_transfer_checkout_session(
    body: TransferCheckoutRequest,
    user_id: str = Depends(current_user_id),
    transfers: TransferStateMachine = Depends(get_transfers),
    reconciler: PaymentReconciler = Depends(get_reconciler),
    provider: PaymentProvider = Depends(get_provider),
):
    checked = transfers.payable(body.transfer_request_id.strip(), user_id)
    if isinstance(checked, TransferNotFound):
        raise HTTPException(status_code=404, detail="Transfer request not found.")
    if isinstance(checked, NotRecipient):
        raise HTTPException(status_code=403, detail="Only the receiver can pay for this transfer.")
    if isinstance(checked, NotPending):
        return coded_error(400, NOT_PENDING, "This transfer has already been completed or rejected.")
    if isinstance(checked, AlreadyPaid):
        return coded_error(400, ALREADY_PAID, "This transfer has already been paid.")
    transfer = checked.transfer

    fee = settings.effective_transfer_fee_pence
    if fee == 0:
        # Free transfers still go through the reconciler under a synthetic reference.
        outcome = reconciler.reconcile(
            PaymentConfirmed(
                reference=f"FREE-TRANSFER-{transfer.id}",
                purpose=TRANSFER,
                channel=ZERO_FEE_CHANNEL,
                amount_pence=0,
                currency=settings.currency,
                user_id=user_id,
                transfer_request_id=transfer.id,
                to_user_id=user_id,
            )
        )
        if not outcome.succeeded:
            return coded_error(400, NOT_PENDING, "This transfer has already been completed or rejected.")
        return {"completed": True, "message": f"You are now the owner of {checked.pet_name}."}

    session = provider.create_checkout_session(
        amount_pence=fee,
        currency=settings.currency,
        success_url=_frontend("/transfer-requests?payment=success&session_id={CHECKOUT_SESSION_ID}"),
        cancel_url=_frontend("/transfer-requests?payment=cancelled"),
        metadata=build_metadata(TRANSFER, user_id, transfer.id),
        product_name="Transfer of ownership fee",
        description=f"Complete transfer of {checked.pet_name} to your account. One-time fee.",
    )
    logger.info("checkout_created purpose=transfer transfer_id=%s session_id=%s", transfer.id, session.id)
    return {"url": session.url}


@router.get("/api/payments/confirm-transfer-session")
def confirm_transfer_session(
    session_id: str | None = None,
    user_id: str = Depends(current_user_id),
    provider: PaymentProvider = Depends(get_provider),
    reconciler: PaymentReconciler = Depends(get_reconciler),
):
    """Return path for transfer checkout; idempotent with the webhook."""

    session_id = (session_id or "").strip()
    if not session_id:
        raise HTTPException(status_code=400, detail="Missing session_id.")
    status = provider.retrieve_checkout_session(session_id)
    if not status.paid:
        _reject("return", "not_paid")
        raise HTTPException(status_code=400, detail="Payment not completed.")
    meta = status.metadata
    if purpose_of(meta) != TRANSFER or not meta.get("transferRequestId") or meta.get("toUserId") != user_id:
        _reject("return", "owner_mismatch")
        raise HTTPException(status_code=403, detail="Invalid session for transfer.")

    outcome = reconciler.reconcile(confirmation_from_session(status))
    if outcome is Outcome.NOT_FOUND:
        raise HTTPException(status_code=404, detail="Transfer request not found.")
    if outcome is Outcome.MISMATCHED:
        raise HTTPException(status_code=403, detail="You are not the recipient of this transfer.")
    if outcome is Outcome.NOT_PENDING:
        return coded_error(400, NOT_PENDING, "This transfer was rejected before payment completed.")
    message = "Transfer completed." if outcome is Outcome.APPLIED else "Transfer already completed."
    return {"success": True, "completed": True, "message": message}


@router.post("/api/payments/webhook")
async def webhook(
    request: Request,
    provider: PaymentProvider = Depends(get_provider),
    reconciler: PaymentReconciler = Depends(get_reconciler),
):
    """Signed provider callback. Duplicate deliveries are acknowledged as received."""

    raw_body = await request.body()
    signature = request.headers.get("stripe-signature")
    if not signature:
        raise HTTPException(status_code=400, detail="Missing stripe-signature.")
    try:
        event = provider.verify_webhook(raw_body, signature)
    except ProviderNotConfigured as exc:
        logger.error("webhook_not_configured error=%s", exc)
        raise HTTPException(status_code=500, detail="Webhook not configured.") from exc
    except InvalidSignature as exc:
        _reject("webhook", "bad_signature")
        logger.warning("webhook_signature_invalid error=%s", exc)
        raise HTTPException(status_code=400, detail="Invalid signature.") from exc

    with bound(event_id_ctx, str(event.get("id", ""))):
        confirmation = confirmation_from_event(event)
        if confirmation is None:
            logger.info("webhook_ignored event_type=%s", event.get("type"))
            return {"received": True}
        outcome = await run_in_threadpool(reconciler.reconcile, confirmation)
        if not outcome.succeeded:
            # Redelivery cannot change these outcomes, so acknowledge and keep the log.
            logger.warning(
                "webhook_not_applied reference=%s outcome=%s", confirmation.reference, outcome.value
            )
        return {"received": True}
