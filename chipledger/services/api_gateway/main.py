"""Public HTTP entrypoint for registrations, payments and transfers.

The gateway authenticates callers with bearer tokens, rate limits promo code
attempts, and relays the outbox to Kafka in the background when enabled.
"""

import asyncio
from contextlib import asynccontextmanager
from time import perf_counter
from uuid import uuid4

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from chipledger.common.config import settings
from chipledger.common.db import SessionLocal
from chipledger.common.logging import configure_logging, logger, trace_id_ctx
from chipledger.common.metrics import (
    http_request_duration_seconds,
    http_requests_total,
    metrics_response,
)
from chipledger.common.startup import log_startup_config
from chipledger.common.tracing import instrument_app, setup_tracing
from chipledger.services.api_gateway import admin, payments, pets, transfers
from chipledger.services.api_gateway.responses import VALIDATION_ERROR, coded_error
from chipledger.services.notifications.service import OutboxPublisher
from chipledger.services.provider_adapter.service import ProviderError, ProviderNotConfigured
from chipledger.services.reconciler.messages import MalformedConfirmation

configure_logging()
setup_tracing(settings.service_name)
log_startup_config(
    settings.service_name,
    [
        "SERVICE_NAME",
        "POSTGRES_DSN",
        "REDIS_URL",
        "KAFKA_BOOTSTRAP_SERVERS",
        "STRIPE_SECRET_KEY",
        "STRIPE_WEBHOOK_SECRET",
        "FRONTEND_URL",
        "REGISTRATION_PRICE_PENCE",
        "TRANSFER_FEE_PENCE",
        "RATE_LIMIT_PER_MINUTE",
    ],
)


@asynccontextmanager
async def lifespan(_: FastAPI):
    """Run the outbox relay alongside the HTTP server."""

    if not settings.outbox_publisher_enabled:
        yield
        return
    publisher = OutboxPublisher(SessionLocal, settings.service_name)
    publisher_task = asyncio.create_task(publisher.run_forever())
    yield
    publisher_task.cancel()
    await publisher.close()


app = FastAPI(title="Chipledger API", lifespan=lifespan)
instrument_app(app)
app.include_router(payments.router)
app.include_router(pets.router)
app.include_router(transfers.router)
app.include_router(admin.router)


def _route_template(request: Request) -> str:
    # Matched template (e.g. /api/pets/{pet_id}), else the raw path.
    route = request.scope.get("route")
    return getattr(route, "path", None) or request.url.path


@app.middleware("http")
async def observe_requests(request: Request, call_next):
    """Bind a correlation id to the request and record its count and latency."""

    token = trace_id_ctx.set(request.headers.get("x-correlation-id") or str(uuid4()))
    started = perf_counter()
    outcome = "500"
    try:
        response = await call_next(request)
        outcome = str(response.status_code)
        response.headers["x-correlation-id"] = trace_id_ctx.get()
        return response
    finally:
        labels = {"service": settings.service_name, "route": _route_template(request), "method": request.method}
        http_request_duration_seconds.labels(**labels).observe(perf_counter() - started)
        http_requests_total.labels(status_code=outcome, **labels).inc()
        trace_id_ctx.reset(token)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(_: Request, exc: RequestValidationError):
    first = exc.errors()[0] if exc.errors() else {}
    field = ".".join(str(part) for part in first.get("loc", ())[1:]) or "body"
    return coded_error(400, VALIDATION_ERROR, f"Invalid {field}: {first.get('msg', 'bad value')}")


@app.exception_handler(MalformedConfirmation)
async def malformed_confirmation_handler(_: Request, exc: MalformedConfirmation):
    logger.warning("confirmation_malformed error=%s", exc)
    return JSONResponse(status_code=400, content={"error": "Malformed payment confirmation."})


@app.exception_handler(ProviderNotConfigured)
async def provider_not_configured_handler(_: Request, exc: ProviderNotConfigured):
    logger.error("provider_not_configured error=%s", exc)
    return JSONResponse(status_code=503, content={"error": str(exc)})


@app.exception_handler(ProviderError)
async def provider_error_handler(_: Request, exc: ProviderError):
    logger.error("provider_call_failed error=%s", exc)
    return JSONResponse(status_code=500, content={"error": "Payment provider request failed."})


@app.exception_handler(Exception)
async def unhandled_error_handler(_: Request, exc: Exception):
    logger.exception("request_failed error_type=%s", type(exc).__name__)
    return JSONResponse(status_code=500, content={"error": "Request failed."})


@app.get("/health")
def health():
    return {"ok": True, "service": settings.service_name}


@app.get("/metrics")
def metrics():
    return metrics_response()
