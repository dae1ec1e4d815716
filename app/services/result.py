from dataclasses import dataclass
from enum import Enum
from typing import Generic, Optional, TypeVar

T = TypeVar("T")


class FailureCode(str, Enum):
    """Why a payment reference could not be reconciled."""

    PAYMENT_NOT_FOUND = "payment_not_found"
    INSUFFICIENT_AMOUNT = "insufficient_amount"


@dataclass(frozen=True)
class Result(Generic[T]):
    """Outcome of a business operation that can fail without being a fault."""

    ok: bool
    value: Optional[T] = None
    error: Optional[str] = None
    error_code: Optional[FailureCode] = None

    @staticmethod
    def success(value: T) -> "Result[T]":
        return Result(ok=True, value=value)

    @staticmethod
    def failure(error: str, code: FailureCode) -> "Result[T]":
        return Result(ok=False, error=error, error_code=code)

    def __bool__(self) -> bool:
        return self.ok
