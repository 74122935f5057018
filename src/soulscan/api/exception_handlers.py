"""Custom exception handlers for the FastAPI application.

Domain exceptions carry a .message; every handler turns it into
{"detail": message} with the matching status code, so routers can simply
let service exceptions propagate.
"""

import logging
from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from soulscan.domain.exceptions import (
    ConfigurationError,
    DomainException,
    DuplicateEntityException,
    EntityNotFoundException,
    FolderNotEmptyError,
    ScanAlreadyRunningError,
)

logger = logging.getLogger(__name__)


# Hey future me - exc.errors() can contain the raw request body as bytes,
# which JSONResponse cannot serialize. Walk the structure and decode them.
def _sanitize_validation_errors(
    errors: list[dict[str, Any]],
) -> list[dict[str, Any]]:
    """Sanitize validation errors by converting bytes to strings.

    Args:
        errors: List of validation error dictionaries from Pydantic

    Returns:
        Sanitized list where bytes are converted to strings
    """

    def _sanitize_value(value: Any) -> Any:
        if isinstance(value, bytes):
            try:
                return value.decode("utf-8")
            except UnicodeDecodeError:
                return value.decode("latin-1")
        elif isinstance(value, dict):
            return {k: _sanitize_value(v) for k, v in value.items()}
        elif isinstance(value, list):
            return [_sanitize_value(item) for item in value]
        elif isinstance(value, tuple):
            return tuple(_sanitize_value(item) for item in value)
        return value

    return [_sanitize_value(error) for error in errors]


def _domain_response(
    request: Request, exc: DomainException, status_code: int, level: int = logging.WARNING
) -> JSONResponse:
    logger.log(
        level,
        "%s at %s: %s",
        exc.__class__.__name__,
        request.url.path,
        exc.message,
        extra={"path": request.url.path, "error": exc.message},
    )
    return JSONResponse(status_code=status_code, content={"detail": exc.message})


# Hey future me, these are GLOBAL handlers - register them during app setup,
# before the first request. Starlette picks the handler of the most specific
# class in the exception's MRO, so the DomainException fallback only catches
# what none of the others do.
def register_exception_handlers(app: FastAPI) -> None:
    """Register handlers for domain and request validation exceptions.

    Mapping:
    - ConfigurationError -> 400
    - EntityNotFoundException -> 404
    - ScanAlreadyRunningError, FolderNotEmptyError, DuplicateEntityException -> 409
    - any other DomainException -> 400
    - RequestValidationError -> 422

    Args:
        app: FastAPI application instance
    """

    @app.exception_handler(ConfigurationError)
    async def configuration_error_handler(
        request: Request, exc: ConfigurationError
    ) -> JSONResponse:
        """Handle configuration errors with 400 Bad Request."""
        return _domain_response(request, exc, status.HTTP_400_BAD_REQUEST)

    @app.exception_handler(EntityNotFoundException)
    async def entity_not_found_exception_handler(
        request: Request, exc: EntityNotFoundException
    ) -> JSONResponse:
        """Handle entity not found exceptions with 404 Not Found."""
        return _domain_response(request, exc, status.HTTP_404_NOT_FOUND, logging.INFO)

    @app.exception_handler(ScanAlreadyRunningError)
    async def scan_already_running_handler(
        request: Request, exc: ScanAlreadyRunningError
    ) -> JSONResponse:
        """Handle a second scan of a busy folder with 409 Conflict."""
        return _domain_response(request, exc, status.HTTP_409_CONFLICT, logging.INFO)

    @app.exception_handler(FolderNotEmptyError)
    async def folder_not_empty_handler(
        request: Request, exc: FolderNotEmptyError
    ) -> JSONResponse:
        """Handle non-cascading removal of a folder with songs with 409 Conflict."""
        return _domain_response(request, exc, status.HTTP_409_CONFLICT)

    @app.exception_handler(DuplicateEntityException)
    async def duplicate_entity_exception_handler(
        request: Request, exc: DuplicateEntityException
    ) -> JSONResponse:
        """Handle duplicate entity exceptions with 409 Conflict."""
        return _domain_response(request, exc, status.HTTP_409_CONFLICT)

    @app.exception_handler(DomainException)
    async def domain_exception_handler(request: Request, exc: DomainException) -> JSONResponse:
        """Handle any other domain exception with 400 Bad Request."""
        return _domain_response(request, exc, status.HTTP_400_BAD_REQUEST)

    @app.exception_handler(RequestValidationError)
    async def request_validation_exception_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        """Handle Pydantic request validation errors with 422 Unprocessable Entity."""
        sanitized_errors = _sanitize_validation_errors(list(exc.errors()))

        logger.warning(
            "Request validation error at %s: %s",
            request.url.path,
            sanitized_errors,
            extra={"path": request.url.path},
        )
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={"detail": sanitized_errors},
        )
