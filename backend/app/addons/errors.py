from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Generic, Optional, TypeVar

T = TypeVar("T")


class ErrorCode(str, Enum):
    UNAUTHORIZED = "UNAUTHORIZED"
    # absent, or owned by someone else: callers cannot tell the two apart
    NOT_FOUND = "NOT_FOUND"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    UNAVAILABLE = "UNAVAILABLE"
    NOT_IN_STOPPABLE_STATE = "NOT_IN_STOPPABLE_STATE"
    ADDON_NOT_RUNNING = "ADDON_NOT_RUNNING"
    ADDON_UNREACHABLE = "ADDON_UNREACHABLE"
    GONE = "GONE"
    RUNTIME_ERROR = "RUNTIME_ERROR"
    TIMEOUT = "TIMEOUT"


HTTP_STATUS: dict[ErrorCode, int] = {
    ErrorCode.UNAUTHORIZED: 401,
    ErrorCode.VALIDATION_ERROR: 400,
    ErrorCode.NOT_FOUND: 404,
    ErrorCode.UNAVAILABLE: 503,
    ErrorCode.NOT_IN_STOPPABLE_STATE: 409,
    ErrorCode.ADDON_NOT_RUNNING: 409,
    ErrorCode.GONE: 410,
    ErrorCode.ADDON_UNREACHABLE: 502,
    ErrorCode.TIMEOUT: 504,
    ErrorCode.RUNTIME_ERROR: 500,
}


def http_status_for(code: ErrorCode) -> int:
    return HTTP_STATUS.get(code, 500)


@dataclass
class AddonError:
    code: ErrorCode
    message: str
    addon_id: Optional[str] = None
    operation: Optional[str] = None

    def __str__(self) -> str:
        where = ""
        if self.operation:
            where = f"{self.operation}"
            if self.addon_id:
                where += f"({self.addon_id})"
            where += ": "
        return f"{self.code.value}: {where}{self.message}"


@dataclass
class Result(Generic[T]):
    """
    Outcome of a core operation: either a value or a typed error.

    A failed result may still carry a value, e.g. the Failed record after an
    install the engine rejected.
    """

    ok: bool
    value: Optional[T] = None
    error: Optional[AddonError] = None

    @classmethod
    def success(cls, value: T) -> "Result[T]":
        return cls(ok=True, value=value)

    @classmethod
    def failure(
        cls,
        code: ErrorCode,
        message: str,
        *,
        addon_id: Optional[str] = None,
        operation: Optional[str] = None,
        value: Optional[T] = None,
    ) -> "Result[T]":
        return cls(
            ok=False,
            value=value,
            error=AddonError(code=code, message=message, addon_id=addon_id, operation=operation),
        )

    @property
    def code(self) -> Optional[ErrorCode]:
        return self.error.code if self.error else None


def not_found(addon_id: str, operation: str) -> Result:
    return Result.failure(ErrorCode.NOT_FOUND, "Addon not found", addon_id=addon_id, operation=operation)
