"""Request ID and request logging middleware."""

import logging
import time
from collections.abc import Callable
from contextvars import ContextVar

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from taskbridge.models.base import generate_nanoid

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"
MAX_REQUEST_ID_LENGTH = 64

request_id_var: ContextVar[str | None] = ContextVar("request_id", default=None)


def get_request_id() -> str | None:
    return request_id_var.get()


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Tag every request with an ID, reusing a sane incoming one.

    The ID is echoed in the response and available to log records through
    ``RequestContextFilter``, so one webhook delivery can be followed from
    receipt to enqueue.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        incoming = request.headers.get(REQUEST_ID_HEADER, "")
        request_id = incoming if 0 < len(incoming) <= MAX_REQUEST_ID_LENGTH else generate_nanoid()
        token = request_id_var.set(request_id)
        try:
            response = await call_next(request)
        finally:
            request_id_var.reset(token)
        response.headers[REQUEST_ID_HEADER] = request_id
        return response


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """One log line per request.

    Health probes log at DEBUG. Rejected requests (4xx) log at WARNING,
    since a burst of 401s on the webhook routes usually means the shared
    secret was rotated on one side only.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        path = request.url.path
        started = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            elapsed_ms = (time.perf_counter() - started) * 1000
            logger.exception(f"{request.method} {path} raised after {elapsed_ms:.1f}ms")
            raise

        elapsed_ms = (time.perf_counter() - started) * 1000
        if path.startswith("/api/health"):
            level = logging.DEBUG
        elif 400 <= response.status_code < 500:
            level = logging.WARNING
        else:
            level = logging.INFO
        logger.log(
            level,
            f"{request.method} {path} {response.status_code} in {elapsed_ms:.1f}ms",
            extra={"status_code": response.status_code, "duration_ms": elapsed_ms},
        )
        return response


class RequestContextFilter(logging.Filter):
    """Adds ``request_id`` to every log record ("-" outside a request)."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = get_request_id() or "-"
        return True
