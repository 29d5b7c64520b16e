"""Custom exception handlers for consistent error responses.

Every error leaves the API in one envelope:

    {"error": {"code": "...", "message": "...", "details": {...}}}

Collaborator messages (payment processor, bot check) are passed through
verbatim in `message`; field-level validation failures carry machine
readable error keys in `details.fields` for the front end to localise.
"""

import logging
from typing import Union

from fastapi import Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from redis.exceptions import RedisError
from sqlalchemy.exc import OperationalError
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)


class ETAServiceException(Exception):
    """Base exception for ETA service errors."""

    def __init__(
        self,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        error_code: str = "INTERNAL_ERROR",
        details: dict | None = None,
    ):
        self.message = message
        self.status_code = status_code
        self.error_code = error_code
        self.details = details
        super().__init__(self.message)


class StepValidationError(ETAServiceException):
    """A wizard step slice failed validation.

    `field_errors` maps field name to an error key such as
    ``passport.errors.expiryTooSoon``.
    """

    def __init__(self, step_id: str, field_errors: dict[str, str]):
        self.step_id = step_id
        self.field_errors = field_errors
        super().__init__(
            message=f"Step '{step_id}' has invalid fields",
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            error_code="STEP_VALIDATION_ERROR",
            details={"step": step_id, "fields": field_errors},
        )


class BotVerificationError(ETAServiceException):
    """Bot-mitigation challenge rejected. Terminal for the request."""

    def __init__(self, message: str = "Security verification failed. Please try again."):
        super().__init__(
            message=message,
            status_code=status.HTTP_403_FORBIDDEN,
            error_code="BOT_VERIFICATION_FAILED",
        )


class PaymentError(ETAServiceException):
    """Payment processor failure or unpaid charge. Draft is preserved."""

    def __init__(
        self,
        message: str,
        error_code: str = "PAYMENT_FAILED",
        status_code: int = status.HTTP_402_PAYMENT_REQUIRED,
    ):
        super().__init__(
            message=message,
            status_code=status_code,
            error_code=error_code,
        )


class PersistenceError(ETAServiceException):
    """The charge succeeded but the application could not be stored."""

    def __init__(self, payment_intent_id: str):
        self.payment_intent_id = payment_intent_id
        super().__init__(
            message=(
                "Your payment succeeded but we couldn't save your application. "
                f"Please contact support quoting payment reference {payment_intent_id}."
            ),
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            error_code="APPLICATION_NOT_SAVED",
            details={"payment_intent_id": payment_intent_id},
        )


class SubmissionStateError(ETAServiceException):
    """Request does not fit the session's current submission phase."""

    def __init__(self, message: str, error_code: str = "INVALID_SUBMISSION_STATE"):
        super().__init__(
            message=message,
            status_code=status.HTTP_409_CONFLICT,
            error_code=error_code,
        )


class EmailDeliveryError(ETAServiceException):
    """Transactional email could not be handed to the provider."""

    def __init__(self, message: str = "We couldn't send your message. Please try again later."):
        super().__init__(
            message=message,
            status_code=status.HTTP_502_BAD_GATEWAY,
            error_code="EMAIL_DELIVERY_FAILED",
        )


class ResourceNotFoundError(ETAServiceException):
    """Exception for resources not found."""

    def __init__(self, resource: str, identifier: str):
        super().__init__(
            message=f"{resource} not found: {identifier}",
            status_code=status.HTTP_404_NOT_FOUND,
            error_code="RESOURCE_NOT_FOUND",
        )


def create_error_response(
    status_code: int,
    message: str,
    error_code: str = "ERROR",
    details: Union[dict, list, None] = None,
) -> JSONResponse:
    """Create standardized error response."""
    content = {
        "error": {
            "code": error_code,
            "message": message,
        }
    }

    if details:
        content["error"]["details"] = details

    return JSONResponse(
        status_code=status_code,
        content=content,
    )


async def eta_exception_handler(request: Request, exc: ETAServiceException) -> JSONResponse:
    log = logger.error if exc.status_code >= 500 else logger.warning
    log(
        "%s on %s %s: %s", exc.error_code, request.method, request.url.path, exc.message,
        extra={"error_code": exc.error_code},
    )

    return create_error_response(
        status_code=exc.status_code,
        message=exc.message,
        error_code=exc.error_code,
        details=exc.details,
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Unknown routes, wrong methods and the like, in the common envelope."""
    if exc.status_code >= 500:
        logger.error("HTTP %s on %s: %s", exc.status_code, request.url.path, exc.detail)

    return create_error_response(
        status_code=exc.status_code,
        message=str(exc.detail),
        error_code=f"HTTP_{exc.status_code}",
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed request bodies (not wizard steps, which carry error keys)."""
    logger.warning("Request validation failed on %s", request.url.path)

    errors = [
        {
            "field": " -> ".join(str(loc) for loc in error["loc"]),
            "message": error["msg"],
            "type": error["type"],
        }
        for error in exc.errors()
    ]

    return create_error_response(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        message="Validation error",
        error_code="VALIDATION_ERROR",
        details={"errors": errors},
    )


def _backend_unavailable(
    request: Request,
    backend: str,
    exc: Exception,
    message: str,
    error_code: str,
) -> JSONResponse:
    logger.error(
        "%s unavailable on %s: %s", backend, request.url.path, exc,
        extra={"path": request.url.path, "method": request.method},
    )
    return create_error_response(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        message=message,
        error_code=error_code,
    )


async def database_unavailable_handler(request: Request, exc: OperationalError) -> JSONResponse:
    """Status lookups and the repository read path when Postgres is down."""
    return _backend_unavailable(
        request, "Database", exc,
        "Application records are temporarily unavailable. Please try again.",
        "DATABASE_UNAVAILABLE",
    )


async def session_store_unavailable_handler(request: Request, exc: RedisError) -> JSONResponse:
    """Wizard endpoints when Redis is down; drafts cannot be read or saved."""
    return _backend_unavailable(
        request, "Session store", exc,
        "Your application session is temporarily unavailable. Please try again.",
        "SESSION_STORE_UNAVAILABLE",
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(
        "Unhandled exception on %s %s", request.method, request.url.path,
    )
    return create_error_response(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        message="An unexpected error occurred. Please try again later.",
        error_code="INTERNAL_SERVER_ERROR",
    )


def register_exception_handlers(app):
    """Register all custom exception handlers with FastAPI app."""
    app.add_exception_handler(ETAServiceException, eta_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(OperationalError, database_unavailable_handler)
    app.add_exception_handler(RedisError, session_store_unavailable_handler)
    app.add_exception_handler(Exception, general_exception_handler)
