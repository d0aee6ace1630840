from dataclasses import dataclass
from typing import Generic, Optional, TypeVar

T = TypeVar("T")

# Error codes shared by the outbound adapters.
NOT_CONFIGURED = "not_configured"
HTTP_ERROR = "http_error"
NETWORK_ERROR = "network_error"
INVALID_WORKBOOK = "invalid_workbook"
NOT_FOUND = "not_found"


@dataclass
class Result(Generic[T]):
    ok: bool
    value: Optional[T] = None
    error: Optional[str] = None
    error_code: Optional[str] = None

    @staticmethod
    def success(value: T) -> "Result[T]":
        return Result(ok=True, value=value)

    @staticmethod
    def failure(error: str, code: str = "unknown") -> "Result[T]":
        return Result(ok=False, error=error, error_code=code)
