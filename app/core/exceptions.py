from typing import Any

from fastapi import Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import ORJSONResponse


class AppError(Exception):
    """Base application error with consistent schema."""

    def __init__(
        self,
        message: str,
        code: str = "ERROR",
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(message)


class UnauthorizedError(AppError):
    def __init__(self, message: str = "Unauthorized"):
        super().__init__(message, code="UNAUTHORIZED", status_code=status.HTTP_401_UNAUTHORIZED)


class NotFoundError(AppError):
    def __init__(self, message: str = "Not found"):
        super().__init__(message, code="NOT_FOUND", status_code=status.HTTP_404_NOT_FOUND)


class BadRequestError(AppError):
    def __init__(
        self,
        message: str = "Bad request",
        details: dict[str, Any] | None = None,
        code: str = "BAD_REQUEST",
    ):
        super().__init__(message, code=code, status_code=status.HTTP_400_BAD_REQUEST, details=details)


# Ledger rejections: caller mistakes and business rules, surfaced verbatim.


class EmptySelectionError(BadRequestError):
    def __init__(self, message: str = "Please select at least one meal"):
        super().__init__(message, code="EMPTY_SELECTION")


class InvalidQuantityError(BadRequestError):
    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message, details=details, code="INVALID_QUANTITY")


class InvalidPackSizeError(BadRequestError):
    def __init__(self, size: Any, allowed: list[int]):
        self.size = size
        self.allowed = list(allowed)
        super().__init__(
            f"Invalid pack size. Must be one of: {', '.join(str(s) for s in self.allowed)}",
            details={"size": size, "allowed": self.allowed},
            code="INVALID_PACK_SIZE",
        )


class InsufficientBalanceError(BadRequestError):
    """Requested credits exceed what the owner's pools can cover."""

    def __init__(self, available: int, requested: int, details: dict[str, Any] | None = None):
        self.available = available
        self.requested = requested
        super().__init__(
            f"You only have {available} meals available. Please reduce your order.",
            details={"available": available, "requested": requested, **(details or {})},
            code="INSUFFICIENT_BALANCE",
        )


class AllocationConflictError(InsufficientBalanceError):
    """A debit lost a race with a concurrent allocation; the attempt was compensated."""


class LedgerStorageError(AppError):
    """Storage failure during a ledger operation. Message is safe to show; context is in details/logs."""

    def __init__(self, operation: str, message: str = "Something went wrong. Please try again.", context: dict[str, Any] | None = None):
        self.operation = operation
        self.context = context or {}
        super().__init__(message, code="LEDGER_STORAGE_ERROR", status_code=status.HTTP_500_INTERNAL_SERVER_ERROR)


class CompensationError(LedgerStorageError):
    """One or more debits could not be credited back; `unrestored` lists them for reconciliation."""

    def __init__(self, unrestored: list[dict[str, Any]]):
        self.unrestored = unrestored
        super().__init__("release", context={"unrestored": unrestored})


def error_response(request: Request, exc: AppError) -> ORJSONResponse:
    body = {
        "error": {
            "message": exc.message,
            "code": exc.code,
            "details": exc.details,
        }
    }
    if hasattr(request.state, "request_id"):
        body["request_id"] = request.state.request_id
    return ORJSONResponse(status_code=exc.status_code, content=body)


async def app_exception_handler(request: Request, exc: AppError) -> ORJSONResponse:
    return error_response(request, exc)


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> ORJSONResponse:
    body = {
        "error": {
            "message": "Validation error",
            "code": "VALIDATION_ERROR",
            "details": {"errors": exc.errors()},
        }
    }
    if hasattr(request.state, "request_id"):
        body["request_id"] = request.state.request_id
    return ORJSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=body,
    )


async def generic_exception_handler(request: Request, exc: Exception) -> ORJSONResponse:
    from app.core.logging import get_logger
    get_logger(__name__).exception("unhandled_exception", exc_info=exc)
    body = {
        "error": {
            "message": "Internal server error",
            "code": "INTERNAL_ERROR",
            "details": {},
        }
    }
    if hasattr(request.state, "request_id"):
        body["request_id"] = request.state.request_id
    return ORJSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=body,
    )
