"""Outcome types for ledger operations: accepted value or a named rejection."""

from enum import Enum
from typing import Any, Generic, Literal, TypeVar

from pydantic import BaseModel, ConfigDict, Field

from app.core.exceptions import (
    BadRequestError,
    EmptySelectionError,
    InsufficientBalanceError,
    InvalidPackSizeError,
    InvalidQuantityError,
)

T = TypeVar("T")


class RejectionReason(str, Enum):
    EMPTY_SELECTION = "EMPTY_SELECTION"
    INVALID_QUANTITY = "INVALID_QUANTITY"
    INVALID_PACK_SIZE = "INVALID_PACK_SIZE"
    INSUFFICIENT_BALANCE = "INSUFFICIENT_BALANCE"


_REASON_BY_ERROR: list[tuple[type[BadRequestError], RejectionReason]] = [
    (EmptySelectionError, RejectionReason.EMPTY_SELECTION),
    (InvalidQuantityError, RejectionReason.INVALID_QUANTITY),
    (InvalidPackSizeError, RejectionReason.INVALID_PACK_SIZE),
    (InsufficientBalanceError, RejectionReason.INSUFFICIENT_BALANCE),
]


class Accepted(BaseModel, Generic[T]):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    ok: Literal[True] = True
    value: T


class Rejected(BaseModel):
    ok: Literal[False] = False
    reason: RejectionReason
    message: str
    details: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_error(cls, exc: BadRequestError) -> "Rejected":
        for error_type, reason in _REASON_BY_ERROR:
            if isinstance(exc, error_type):
                return cls(reason=reason, message=exc.message, details=exc.details)
        raise TypeError(f"{type(exc).__name__} is not a ledger rejection")

    @property
    def available(self) -> int | None:
        """Credits the owner had when an INSUFFICIENT_BALANCE rejection was issued."""
        return self.details.get("available")

    def to_error(self) -> BadRequestError:
        """HTTP-layer error carrying the same code, message and details."""
        return BadRequestError(self.message, details=self.details, code=self.reason.value)

