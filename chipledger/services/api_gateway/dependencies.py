"""Request-scoped dependencies: identity, storage, provider and rate limiting."""

from functools import lru_cache
from time import time

import jwt
import redis
from fastapi import Depends, Header, HTTPException

from chipledger.common.config import settings
from chipledger.common.db import SessionLocal
from chipledger.common.logging import logger
from chipledger.services.promo.service import PromoRedemption
from chipledger.services.provider_adapter.service import PaymentProvider, build_provider
from chipledger.services.reconciler.service import PaymentReconciler
from chipledger.services.registration.service import RegistrationGate
from chipledger.services.transfers.service import TransferStateMachine


def get_session_factory():
    return SessionLocal


@lru_cache(maxsize=1)
def get_provider() -> PaymentProvider:
    return build_provider()


def _bearer_claims(authorization: str | None) -> dict:
    token = authorization[7:] if authorization and authorization.startswith("Bearer ") else None
    if not token:
        raise HTTPException(status_code=401, detail="Unauthorized.")
    try:
        return jwt.decode(token, settings.jwt_secret, algorithms=["HS256"])
    except jwt.PyJWTError as exc:
        raise HTTPException(status_code=401, detail="Invalid or expired token.") from exc


def current_user_id(authorization: str | None = Header(default=None)) -> str:
    """User id from the `userId` claim of an HS256 bearer token."""

    user_id = _bearer_claims(authorization).get("userId")
    if not user_id:
        raise HTTPException(status_code=401, detail="Unauthorized.")
    return str(user_id)


def current_admin_id(authorization: str | None = Header(default=None)) -> str:
    claims = _bearer_claims(authorization)
    if not claims.get("userId"):
        raise HTTPException(status_code=401, detail="Unauthorized.")
    if claims.get("role") != "ADMIN":
        raise HTTPException(status_code=403, detail="Forbidden. Admin access required.")
    return str(claims["userId"])


class TokenBucketLimiter:
    """Redis token bucket (capacity = refill rate = limit per minute)."""

    def __init__(self, rdb: redis.Redis, limit_per_minute: int) -> None:
        self.rdb = rdb
        self.capacity = float(limit_per_minute)

    def enforce(self, scope: str, subject: str) -> None:
        key = f"tokenbucket:{scope}:{subject}"
        now = time()
        refill_per_sec = self.capacity / 60.0
        try:
            values = self.rdb.hmget(key, "tokens", "updated_at")
        except redis.RedisError as exc:
            # Fail open; the ledger's own constraints still hold without the limiter.
            logger.warning("rate_limit_unavailable scope=%s error=%s", scope, exc)
            return
        tokens = float(values[0]) if values[0] is not None else self.capacity
        updated_at = float(values[1]) if values[1] is not None else now
        elapsed = max(0.0, now - updated_at)
        tokens = min(self.capacity, tokens + elapsed * refill_per_sec)

        allowed = tokens >= 1.0
        if allowed:
            tokens -= 1.0
        try:
            self.rdb.hset(key, mapping={"tokens": tokens, "updated_at": now})
            self.rdb.expire(key, 120)
        except redis.RedisError as exc:
            logger.warning("rate_limit_write_failed scope=%s error=%s", scope, exc)
        if not allowed:
            raise HTTPException(status_code=429, detail="Too many attempts. Please wait a minute.")


@lru_cache(maxsize=1)
def get_rate_limiter() -> TokenBucketLimiter:
    rdb = redis.Redis.from_url(
        settings.redis_url, decode_responses=True, socket_timeout=0.5, socket_connect_timeout=0.5
    )
    return TokenBucketLimiter(rdb, settings.rate_limit_per_minute)


def get_reconciler(session_factory=Depends(get_session_factory)) -> PaymentReconciler:
    return PaymentReconciler(session_factory)


def get_registration_gate(session_factory=Depends(get_session_factory)) -> RegistrationGate:
    return RegistrationGate(session_factory)


def get_promo(session_factory=Depends(get_session_factory)) -> PromoRedemption:
    return PromoRedemption(session_factory)


def get_transfers(session_factory=Depends(get_session_factory)) -> TransferStateMachine:
    return TransferStateMachine(session_factory)
