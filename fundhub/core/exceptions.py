"""
Fund data error taxonomy and global exception handlers for the fundhub backend.

Catches pipeline failures and returns user-friendly error responses
while logging appropriately (upstream trouble as warning, others as error).
"""
from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from fundhub.core.logging_config import get_main_logger

logger = get_main_logger()


class FundDataError(Exception):
    """Base class for fund data acquisition failures."""

    status_code = 500
    error_type = "fund_data_error"

    def __init__(self, message: str = "Fund data acquisition failed"):
        self.message = message
        super().__init__(self.message)


class NoEnvironmentError(FundDataError):
    """
    Raised when no script-capable execution environment is available.

    Nothing is sent upstream when this is raised.
    """
    status_code = 503
    error_type = "no_environment"

    def __init__(self, message: str = "No script environment available"):
        super().__init__(message)


class LoadFailureError(FundDataError):
    """Raised when a provider script reported a load error."""
    status_code = 502
    error_type = "load_failure"

    def __init__(self, message: str = "Provider script failed to load", url: str | None = None):
        self.url = url
        super().__init__(message)


class CallbackTimeoutError(FundDataError):
    """Raised when a provider never invoked its callback within the bound."""
    status_code = 504
    error_type = "timeout"

    def __init__(self, message: str = "Provider callback timed out", timeout_ms: int | None = None):
        self.timeout_ms = timeout_ms
        super().__init__(message)


class InvalidFundCodeError(FundDataError):
    """Raised when a fund code is not 6 digits. Nothing is sent upstream."""
    status_code = 422
    error_type = "invalid_code"

    def __init__(self, code: object = None):
        self.code = code
        super().__init__(f"Invalid fund code: {code!r}")


class DataUnavailableError(FundDataError):
    """Raised when a provider answered but carried no usable record."""
    status_code = 404
    error_type = "data_unavailable"

    def __init__(self, message: str = "No usable fund data"):
        super().__init__(message)


async def fund_data_exception_handler(request: Request, exc: FundDataError) -> JSONResponse:
    """
    Handle fund data failures.
    Maps each failure kind to its HTTP status.
    """
    if isinstance(exc, DataUnavailableError):
        logger.info(f"No data: {request.method} {request.url.path} - {exc.message}")
    elif isinstance(exc, InvalidFundCodeError):
        logger.info(f"Rejected: {request.method} {request.url.path} - {exc.message}")
    else:
        logger.warning(
            f"Upstream failure: {request.method} {request.url.path} - {type(exc).__name__}: {exc.message}"
        )
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "detail": exc.message,
            "error_type": exc.error_type,
        }
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Handle all other unhandled exceptions.
    Logs as error and returns 500 response.
    """
    logger.error(f"Unhandled exception: {request.method} {request.url.path} - {type(exc).__name__}: {exc}")
    return JSONResponse(
        status_code=500,
        content={
            "detail": "An internal error occurred. Please try again later.",
            "error_type": "internal_error"
        }
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """
    Handle HTTP exceptions (404, 422, etc.).
    These are expected and not logged.
    """
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail}
    )


def register_exception_handlers(app):
    """Register all exception handlers with the FastAPI app."""
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(FundDataError, fund_data_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)
