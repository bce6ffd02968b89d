"""Administrative endpoints."""

from fastapi import APIRouter, Depends, HTTPException

from chipledger.common.logging import logger
from chipledger.services.api_gateway.dependencies import current_admin_id, get_promo
from chipledger.services.promo.service import InvalidCode, PromoExists, PromoRedemption
from chipledger.services.registration.schemas import CamelModel

router = APIRouter(prefix="/api/admin")


class PromoCreateRequest(CamelModel):
    code: str
    max_uses: int | None = None


@router.post("/promo", status_code=201)
def create_promo(
    body: PromoCreateRequest,
    admin_id: str = Depends(current_admin_id),
    promo: PromoRedemption = Depends(get_promo),
):
    result = promo.create(body.code, body.max_uses)
    if isinstance(result, InvalidCode):
        raise HTTPException(status_code=400, detail="Code is required.")
    if isinstance(result, PromoExists):
        raise HTTPException(status_code=409, detail="A promo code with this name already exists.")
    created = result.promo
    logger.info("admin_promo_created admin_id=%s code=%s", admin_id, created.code)
    return {"id": created.id, "code": created.code, "maxUses": created.max_uses, "usedCount": created.used_count}
