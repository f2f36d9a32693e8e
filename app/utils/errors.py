import traceback
from typing import TYPE_CHECKING, Any, Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from .logging import get_logger
from .responses import ResponseBuilder

if TYPE_CHECKING:
    from app.services.notifications.types import ProcessingSummary

logger = get_logger()


class AppError(Exception):
    """Base for errors that map onto an API error response.

    Subclasses set the HTTP status and ``error_type``; ``error_code`` names the
    concrete failure and is returned to clients as ``meta.error_code``.
    """

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    error_type = "INTERNAL_ERROR"
    default_code = "INTERNAL_ERROR"

    def __init__(self, message: str, error_code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.default_code

    def response_data(self) -> Any:
        return None


class DatabaseError(AppError):
    error_type = "DATABASE_ERROR"
    default_code = "DB_ERROR"


class BusinessLogicError(AppError):
    """A request that is well-formed but not allowed in the current state."""

    status_code = status.HTTP_400_BAD_REQUEST
    error_type = "BUSINESS_ERROR"
    default_code = "BLOC_ERROR"


class NotFoundError(AppError):
    status_code = status.HTTP_404_NOT_FOUND
    error_type = "NOT_FOUND_ERROR"
    default_code = "NOT_FOUND"

    def __init__(self, message: str = "Resource not found", error_code: Optional[str] = None):
        super().__init__(message, error_code)


class PushTransportError(AppError):
    """Raised by a push transport when a whole batch could not be delivered."""

    status_code = status.HTTP_502_BAD_GATEWAY
    error_type = "PUSH_TRANSPORT_ERROR"
    default_code = "PUSH_TRANSPORT_ERROR"


class NotificationProcessingError(AppError):
    """A delivery sweep finished with records whose status update failed."""

    error_type = "NOTIFICATION_PROCESSING_ERROR"
    default_code = "NOTIFICATION_PARTIAL_PROCESSING"

    def __init__(
        self,
        summary: "ProcessingSummary",
        message: Optional[str] = None,
        error_code: Optional[str] = None,
    ):
        super().__init__(
            message
            or f"Processed {summary.processed} of {summary.total_due} due notifications",
            error_code,
        )
        self.summary = summary

    def response_data(self) -> Any:
        return self.summary.model_dump(by_alias=True)


def setup_error_handlers(app: FastAPI):
    """Register the JSON error envelope for every error the API can raise."""

    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError):
        logger.error(f"{exc.__class__.__name__} [{exc.error_code}]: {exc.message}")

        return ResponseBuilder.error(
            request=request,
            message=exc.message,
            error_code=exc.error_code,
            status_code=exc.status_code,
            data=exc.response_data(),
            meta={"error_type": exc.error_type},
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        logger.warning(f"HTTP {exc.status_code} on {request.url.path}: {exc.detail}")

        return ResponseBuilder.error(
            request=request,
            message=str(exc.detail),
            error_code="HTTP_ERROR",
            status_code=exc.status_code,
            meta={"http_status": exc.status_code},
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_exception_handler(
        request: Request, exc: RequestValidationError
    ):
        errors = [
            {
                "field": " -> ".join(str(loc) for loc in error["loc"]),
                "message": error["msg"],
                "type": error["type"],
            }
            for error in exc.errors()
        ]
        logger.warning(f"Invalid request to {request.url.path}: {errors}")

        return ResponseBuilder.error(
            request=request,
            message="Request validation failed",
            errors=errors,
            error_code="VALIDATION_ERROR",
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        )

    @app.exception_handler(ValidationError)
    async def pydantic_validation_exception_handler(
        request: Request, exc: ValidationError
    ):
        # Response models failing to validate is a server bug, not bad input
        logger.error(f"Response validation failed: {exc.errors()}")

        return ResponseBuilder.error(
            request=request,
            message="Data validation failed",
            error_code="INTERNAL_VALIDATION_ERROR",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )

    @app.exception_handler(SQLAlchemyError)
    async def sqlalchemy_exception_handler(request: Request, exc: SQLAlchemyError):
        logger.error(f"SQLAlchemy Error: {str(exc)}")

        return ResponseBuilder.error(
            request=request,
            message="A database error occurred",
            error_code="DATABASE_ERROR",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            meta={"error_type": "SQLALCHEMY_ERROR"},
        )

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError):
        logger.warning(f"Value Error: {str(exc)}")

        return ResponseBuilder.error(
            request=request,
            message=str(exc),
            error_code="VALUE_ERROR",
            status_code=status.HTTP_400_BAD_REQUEST,
            meta={"error_type": "VALUE_ERROR"},
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        logger.error(
            f"Unhandled {exc.__class__.__name__} on {request.url.path}: {str(exc)}\n"
            f"{traceback.format_exc()}"
        )

        return ResponseBuilder.error(
            request=request,
            message="An internal server error occurred",
            error_code="INTERNAL_ERROR",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            meta={"error_type": "INTERNAL_ERROR"},
        )
