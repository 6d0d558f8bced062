import logging

from fastapi import Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

logger = logging.getLogger(__name__)


class AppError(Exception):
    """
    Base business-rule failure. Carries the HTTP status the request
    boundary answers with; the body is always {"error": message}.
    """

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ValidationError(AppError):
    status_code = status.HTTP_400_BAD_REQUEST


class CouponError(ValidationError):
    INVALID = "InvalidCoupon"
    EXPIRED = "Expired"
    USAGE_LIMIT_EXCEEDED = "UsageLimitExceeded"
    MINIMUM_NOT_MET = "MinimumNotMet"
    PER_USER_LIMIT_EXCEEDED = "PerUserLimitExceeded"

    def __init__(self, reason: str, message: str):
        self.reason = reason
        super().__init__(message)


class InvalidOTPError(ValidationError):
    def __init__(self, message: str = "Invalid OTP. Please try again."):
        super().__init__(message)


class ExternalVerificationError(AppError):
    status_code = status.HTTP_400_BAD_REQUEST


class StateConflictError(AppError):
    status_code = status.HTTP_409_CONFLICT


class IntegrityError(AppError):
    # Raised only after the internal retry budget is spent.
    status_code = status.HTTP_409_CONFLICT


class NotFoundError(AppError):
    status_code = status.HTTP_404_NOT_FOUND


class AuthorizationError(AppError):
    status_code = status.HTTP_403_FORBIDDEN


# =====================================================
# REQUEST BOUNDARY HANDLERS
# =====================================================

async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


async def http_error_handler(request: Request, exc: HTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.detail},
        headers=getattr(exc, "headers", None),
    )


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    first = exc.errors()[0] if exc.errors() else {}
    field = ".".join(str(p) for p in first.get("loc", []) if p != "body")
    message = f"Invalid {field}: {first.get('msg')}" if field else "Invalid request body"
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"error": message})


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("UNHANDLED_ERROR path=%s", request.url.path, exc_info=exc)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": "Internal server error"},
    )
