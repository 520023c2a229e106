import logging

from fastapi import HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from bursary.core.config import settings
from bursary.core.exceptions import AppException
from bursary.shared.schemas import ErrorResponse, ErrorDetail

logger = logging.getLogger(__name__)


async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """Handle application exceptions."""
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)

    field = exc.details.get("field")
    errors = [ErrorDetail(field=field, message=exc.message)]

    response = ErrorResponse(
        message=exc.message,
        errors=errors,
    )

    return JSONResponse(
        status_code=exc.status_code,
        content=response.model_dump(),
    )


def _format_validation_errors(errors: list[dict]) -> list[ErrorDetail]:
    details: list[ErrorDetail] = []
    for error in errors:
        loc = error.get("loc", ())
        # Drop top-level "body" for cleaner field paths
        if loc and loc[0] == "body":
            loc = loc[1:]
        field = ".".join(str(part) for part in loc) if loc else None
        details.append(ErrorDetail(field=field, message=error.get("msg", "Invalid value")))
    return details


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Handle FastAPI validation errors."""
    response = ErrorResponse(
        message="Validation error",
        errors=_format_validation_errors(exc.errors()),
    )
    return JSONResponse(
        status_code=422,
        content=response.model_dump(),
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handle generic HTTP exceptions."""
    errors = [ErrorDetail(field=None, message=str(exc.detail) if exc.detail else "HTTP error")]
    response = ErrorResponse(
        message=str(exc.detail) if exc.detail else "HTTP error",
        errors=errors,
    )
    return JSONResponse(
        status_code=exc.status_code,
        content=response.model_dump(),
    )


def _friendly_db_error(exc: Exception) -> tuple[str, int]:
    """
    Convert common DB errors to a stable, user-facing message.

    Full DB error details are only exposed when debug is enabled.
    """
    raw = str(getattr(exc, "orig", exc))
    lower = raw.lower()

    if "does not exist" in lower and ("column" in lower or "relation" in lower):
        return (
            "Database schema is out of date. Run the latest migrations and try again.",
            500,
        )

    if "unique constraint" in lower or "duplicate key" in lower:
        return ("Record already exists", 409)

    if settings.debug:
        return (raw, 500)

    return ("Database error", 500)


async def sqlalchemy_db_error_handler(request: Request, exc: Exception) -> JSONResponse:
    message, status_code = _friendly_db_error(exc)
    logger.exception("Database error on %s %s", request.method, request.url.path)
    response = ErrorResponse(
        message=message,
        errors=[ErrorDetail(field=None, message=message)],
    )
    return JSONResponse(status_code=status_code, content=response.model_dump())
