import logging

from fastapi import HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class ReleaseEngineError(Exception):
    """Base error; carries the kind the console renders."""

    status_code = 500
    code = "internal"

    def __init__(self, message: str, details=None):
        super().__init__(message)
        self.message = message
        self.details = details


class NotFoundError(ReleaseEngineError):
    status_code = 404
    code = "not_found"


class InvalidArgumentError(ReleaseEngineError, ValueError):
    status_code = 400
    code = "invalid_argument"


class ConflictError(ReleaseEngineError):
    status_code = 409
    code = "conflict"


class UnauthorizedError(ReleaseEngineError):
    """Caller does not own the target entity."""

    status_code = 403
    code = "unauthorized"


class InternalError(ReleaseEngineError):
    status_code = 500
    code = "internal"


def _error_payload(code: str, message: str, details):
    return {"code": code, "message": message, "details": details}


def register_error_handlers(app) -> None:
    @app.exception_handler(ReleaseEngineError)
    async def release_engine_error_handler(request: Request, exc: ReleaseEngineError):
        if exc.status_code >= 500:
            logger.error("Request failed: %s", exc.message, extra={"path": request.url.path})
        return JSONResponse(
            status_code=exc.status_code,
            content=_error_payload(exc.code, exc.message, exc.details),
        )

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        detail = exc.detail
        code = f"http_{exc.status_code}"
        message = "Request failed"
        details = None
        if isinstance(detail, dict):
            code = detail.get("code", code)
            message = detail.get("message", message)
            details = detail.get("details")
        elif isinstance(detail, str):
            message = detail
        else:
            details = detail
        return JSONResponse(
            status_code=exc.status_code,
            content=_error_payload(code, message, details),
            headers=exc.headers,
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=422,
            content=_error_payload("validation_error", "Validation error", exc.errors()),
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        from release_engine.observability import report_error

        report_error(exc, source="http", path=request.url.path)
        return JSONResponse(
            status_code=500,
            content=_error_payload("internal_error", "Internal server error", None),
        )
