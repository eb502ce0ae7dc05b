"""Request instrumentation and the error collector."""

import logging
import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from release_engine.metrics import REPORTED_ERRORS, REQUEST_COUNT, REQUEST_ERRORS, REQUEST_LATENCY

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "x-request-id"


def _route_path(request: Request) -> str:
    route = request.scope.get("route")
    path = getattr(route, "path", None)
    return path or request.url.path


def report_error(exc: BaseException, *, source: str, **context) -> None:
    """Hand an error to the external collector (structured log + counter)."""
    REPORTED_ERRORS.labels(source=source).inc()
    logger.error(
        "Reported error from %s: %s",
        source,
        exc,
        exc_info=(type(exc), exc, exc.__traceback__),
        extra={"source": source, **context},
    )


class ObservabilityMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        request.state.request_id = request_id
        started = time.perf_counter()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            response.headers[REQUEST_ID_HEADER] = request_id
            return response
        finally:
            elapsed = time.perf_counter() - started
            path = _route_path(request)
            labels = {"method": request.method, "path": path, "status": str(status_code)}
            REQUEST_COUNT.labels(**labels).inc()
            REQUEST_LATENCY.labels(**labels).observe(elapsed)
            if status_code >= 500:
                REQUEST_ERRORS.labels(**labels).inc()
            logger.info(
                "%s %s",
                request.method,
                request.url.path,
                extra={
                    "request_id": request_id,
                    "method": request.method,
                    "path": path,
                    "status_code": status_code,
                    "duration_ms": round(elapsed * 1000, 2),
                },
            )
