"""Machine-readable error bodies clients branch on (pay, re-enter a code, ...)."""

from fastapi.responses import JSONResponse

PAYMENT_REQUIRED = "PAYMENT_REQUIRED"
DUPLICATE_CHIP = "DUPLICATE_CHIP"
INVALID_CODE = "INVALID_CODE"
LIMIT_REACHED = "LIMIT_REACHED"
TRANSFER_PENDING = "TRANSFER_PENDING"
ALREADY_PAID = "ALREADY_PAID"
NOT_PENDING = "NOT_PENDING"
NEED_PAYMENT = "NEED_PAYMENT"
VALIDATION_ERROR = "VALIDATION_ERROR"


def coded_error(status_code: int, code: str, message: str, **extra) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message, "code": code, **extra})
