"""JSON logs carrying the request, webhook event and payment reference in scope."""

import logging
import sys
from contextlib import contextmanager
from contextvars import ContextVar

from pythonjsonlogger.json import JsonFormatter

from chipledger.common.config import settings


trace_id_ctx: ContextVar[str] = ContextVar("trace_id", default="")
event_id_ctx: ContextVar[str] = ContextVar("event_id", default="")
payment_ref_ctx: ContextVar[str] = ContextVar("payment_ref", default="")

# Client libraries that log every HTTP round trip at INFO.
NOISY_LOGGERS = ("stripe", "aiokafka", "httpx")


class ContextFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.service_name = settings.service_name
        record.trace_id = trace_id_ctx.get()
        record.event_id = event_id_ctx.get()
        record.payment_ref = payment_ref_ctx.get()
        return True


def configure_logging() -> None:
    """Route all records through one stdout JSON handler."""

    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(ContextFilter())
    handler.setFormatter(
        JsonFormatter(
            "%(asctime)s %(levelname)s %(name)s %(service_name)s %(trace_id)s %(event_id)s %(payment_ref)s %(message)s",
            rename_fields={"asctime": "timestamp", "levelname": "level"},
        )
    )
    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(settings.log_level)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


@contextmanager
def bound(ctx: ContextVar[str], value: str):
    """Set a context field for the duration of the block."""

    token = ctx.set(value)
    try:
        yield
    finally:
        ctx.reset(token)


logger = logging.getLogger("chipledger")
