"""JSON error responses.

Every response body carries a ``detail`` string so the proxy plugin can
show it to the player verbatim.
"""

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from gatekeeper.exceptions import GatekeeperError, StorageError, VerificationTimeoutError

logger = structlog.get_logger()

# Infrastructure failures are transient from the caller's point of view
DOMAIN_ERRORS: dict[type[GatekeeperError], tuple[int, str, str]] = {
    StorageError: (503, "storage_unavailable", "Storage temporarily unavailable"),
    VerificationTimeoutError: (503, "verification_timeout", "Verification timed out. Please try again."),
}
FALLBACK_ERROR = (503, "gatekeeper_error", "Service temporarily unavailable")


async def domain_error_handler(request: Request, exc: Exception) -> JSONResponse:
    status_code, event, detail = next(
        (entry for error_type, entry in DOMAIN_ERRORS.items() if isinstance(exc, error_type)),
        FALLBACK_ERROR,
    )
    logger.error(event, path=request.url.path, error=str(exc))
    return JSONResponse(status_code=status_code, content={"detail": detail})


async def http_error_handler(_request: Request, exc: Exception) -> JSONResponse:
    assert isinstance(exc, StarletteHTTPException)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail}, headers=exc.headers)


async def validation_error_handler(_request: Request, exc: Exception) -> JSONResponse:
    assert isinstance(exc, RequestValidationError)
    return JSONResponse(status_code=422, content={"detail": "Validation error", "errors": exc.errors()})


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error("unhandled_exception", path=request.url.path, method=request.method, exc_info=exc)
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


def setup_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(GatekeeperError, domain_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
