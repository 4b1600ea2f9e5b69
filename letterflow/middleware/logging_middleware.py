"""
Request logging for the approval and trigger API

Every request gets an ``X-Request-ID`` (taken from the caller when present)
that is echoed on the response and included in each log line, so a
reviewer decision can be traced through the queue logs.
"""
import time
from typing import Callable
from uuid import uuid4

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from letterflow.utils.logger import get_logger

logger = get_logger(__name__)

QUIET_PATHS = ("/api/health",)
REQUEST_ID_HEADER = "X-Request-ID"


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)


class LoggingMiddleware(BaseHTTPMiddleware):
    """Logs API calls with status and duration; health probes stay silent"""

    async def dispatch(self, request: Request, call_next: Callable):
        if request.url.path in QUIET_PATHS:
            return await call_next(request)

        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid4().hex[:12]
        label = f"[{request_id}] {request.method} {request.url.path}"
        started = time.perf_counter()

        client = request.client.host if request.client else "unknown"
        query = f"?{request.url.query}" if request.url.query else ""
        logger.info(f"→ {label}{query} from {client}")

        try:
            response = await call_next(request)
        except Exception as e:
            logger.error(f"✗ {label} failed after {_elapsed_ms(started)}ms: {e}", exc_info=True)
            raise

        elapsed = _elapsed_ms(started)
        log = logger.warning if response.status_code >= 500 else logger.info
        log(f"← {label} {response.status_code} ({elapsed}ms)")

        response.headers[REQUEST_ID_HEADER] = request_id
        response.headers["X-Process-Time"] = str(elapsed)
        return response
