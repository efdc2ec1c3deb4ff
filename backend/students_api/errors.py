"""
Error taxonomy and the FastAPI exception handlers that turn errors into
JSON envelopes of the form::

    {"success": false, "error": "<code>", "message": "<text>", ...details}
"""

import traceback
from typing import Any, Callable, Dict, List, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from students_api.config import Settings
from students_api.logging_config import get_logger, log_with_context

logger = get_logger("http")

GENERIC_ERROR_MESSAGE = "An internal server error occurred"


class StudentsApiError(Exception):
    """Base class for errors that map onto an HTTP response."""

    status_code = 500
    code = "InternalError"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": False,
            "error": self.code,
            "message": self.message,
            **self.details,
        }


class InvalidInputError(StudentsApiError):
    """Malformed student id."""
    status_code = 400
    code = "InvalidInput"


class UnprocessableInputError(StudentsApiError):
    """Missing or unusable fields in a request body."""
    status_code = 422
    code = "UnprocessableInput"


class NotFoundError(StudentsApiError):
    status_code = 404
    code = "NotFound"


class BadRequestError(StudentsApiError):
    """Rejected update, including storage-layer failures on write."""
    status_code = 400
    code = "BadRequest"


class ServiceUnavailableError(StudentsApiError):
    """The database is not connected."""
    status_code = 503
    code = "ServiceUnavailable"


class InternalError(StudentsApiError):
    status_code = 500
    code = "InternalError"


class NotFoundRouteError(StudentsApiError):
    status_code = 404
    code = "NotFoundRoute"


class DatabaseConfigurationError(Exception):
    """The database cannot be configured (e.g. no connection string)."""


class DatabaseConnectionError(Exception):
    """The bounded connection retry budget was exhausted."""


def _envelope(error: StudentsApiError) -> JSONResponse:
    return JSONResponse(status_code=error.status_code, content=error.to_dict())


def register_exception_handlers(app: FastAPI, settings: Settings,
                                route_catalog: Callable[[], List[Dict[str, str]]]):
    """
    Register the handlers that convert every failure into a JSON envelope.

    ``route_catalog`` returns the list of known routes reported by the
    catch-all not-found response.
    """

    @app.exception_handler(StudentsApiError)
    async def students_api_error_handler(request: Request, exc: StudentsApiError):
        level = "ERROR" if exc.status_code >= 500 else "WARNING"
        log_with_context(logger, level,
            f"{exc.code}: {exc.message}",
            extra_data={"method": request.method, "path": request.url.path,
                        "status_code": exc.status_code})
        return _envelope(exc)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        error = UnprocessableInputError(
            "Request body could not be processed",
            details={"errors": _jsonable_errors(exc.errors())},
        )
        log_with_context(logger, "WARNING",
            f"Validation failed: {request.method} {request.url.path}",
            extra_data={"errors": error.details["errors"]})
        return _envelope(error)

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        if exc.status_code in (404, 405):
            error = NotFoundRouteError(
                f"Route {request.method} {request.url.path} does not exist",
                details={"available_routes": route_catalog()},
            )
            return _envelope(error)
        return JSONResponse(
            status_code=exc.status_code,
            content={"success": False, "error": "HTTPError", "message": str(exc.detail)},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        log_with_context(logger, "ERROR",
            f"Unhandled error on {request.method} {request.url.path}: {exc}",
            extra_data={"error_type": type(exc).__name__},
            exc_info=exc)
        if settings.is_production:
            content = InternalError(GENERIC_ERROR_MESSAGE).to_dict()
        else:
            content = InternalError(str(exc) or type(exc).__name__, details={
                "stack": traceback.format_exception(type(exc), exc, exc.__traceback__),
            }).to_dict()
        return JSONResponse(status_code=500, content=content)


def _jsonable_errors(errors) -> List[Dict[str, Any]]:
    # pydantic error dicts can carry the raw input and exception objects
    return [
        {"loc": list(err.get("loc", ())), "msg": err.get("msg"), "type": err.get("type")}
        for err in errors
    ]
