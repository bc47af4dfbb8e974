"""
Correlation IDs tying a webhook delivery to the conversation work it triggers.

The gateway (or a proxy in front of us) may send X-Correlation-ID; otherwise a
UUID is minted. The id lives in request.state and a contextvar, is echoed on
the response, and is handed to the background batch so engine, delivery and
classifier logs for that delivery share it.
"""

import logging
import uuid
from collections.abc import Callable
from contextvars import ContextVar

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

HEADER_CORRELATION_ID = "X-Correlation-ID"
MAX_CORRELATION_ID_LENGTH = 128

_correlation_id_var: ContextVar[str | None] = ContextVar("correlation_id", default=None)


def get_correlation_id(request: Request | None = None) -> str | None:
    """Correlation ID for the current request (request.state first, then contextvar)."""
    if request is not None and getattr(request.state, "correlation_id", None):
        return request.state.correlation_id
    return _correlation_id_var.get()


def set_correlation_id(correlation_id: str | None) -> None:
    """Restore a webhook's correlation ID inside its background processing task."""
    _correlation_id_var.set(correlation_id)


class CorrelationIdLogFilter(logging.Filter):
    """Stamps record.correlation_id from the contextvar unless the call passed one."""

    def filter(self, record: logging.LogRecord) -> bool:
        if getattr(record, "correlation_id", None) is None:
            record.correlation_id = _correlation_id_var.get() or "-"
        return True


def install_log_filter(handlers: list[logging.Handler]) -> None:
    for handler in handlers:
        if not any(isinstance(f, CorrelationIdLogFilter) for f in handler.filters):
            handler.addFilter(CorrelationIdLogFilter())


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Accepts a caller's id up to MAX_CORRELATION_ID_LENGTH chars, else mints one."""

    async def dispatch(self, request: Request, call_next: Callable):
        incoming = (request.headers.get(HEADER_CORRELATION_ID) or "").strip()
        cid = incoming if 0 < len(incoming) <= MAX_CORRELATION_ID_LENGTH else str(uuid.uuid4())
        request.state.correlation_id = cid
        token = _correlation_id_var.set(cid)
        try:
            response = await call_next(request)
        finally:
            _correlation_id_var.reset(token)
        response.headers[HEADER_CORRELATION_ID] = cid
        return response
