from dataclasses import dataclass
from typing import Generic, Optional, TypeVar

from frontdesk.services.errors import FrontDeskError

T = TypeVar("T")


@dataclass
class Result(Generic[T]):
    ok: bool
    value: Optional[T] = None
    error: Optional[str] = None
    error_code: Optional[str] = None

    @classmethod
    def success(cls, value: T, **fields) -> "Result[T]":
        return cls(ok=True, value=value, **fields)

    @classmethod
    def failure(cls, error: str, code: str = "unknown", **fields) -> "Result[T]":
        return cls(ok=False, error=error, error_code=code, **fields)

    @classmethod
    def from_error(cls, exc: Exception, **fields) -> "Result[T]":
        code = exc.code if isinstance(exc, FrontDeskError) else "unknown"
        return cls(ok=False, error=str(exc), error_code=code, **fields)

    def describe(self) -> str:
        """Human-readable outcome, suitable for feeding back into a model turn."""
        if self.ok:
            return "" if self.value is None else str(self.value)
        return f"Error ({self.error_code}): {self.error}"
