"""Custom exceptions for API error handling."""

from __future__ import annotations

from typing import Any


class APIError(Exception):
    """Operational API error converted to JSON response."""

    def __init__(
        self,
        *,
        code: str,
        message: str,
        status_code: int = 400,
        details: dict[str, Any] | list[Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.status_code = status_code
        self.details = details


class SessionUnavailableError(APIError):
    def __init__(self, message: str = "Search engine not initialized. Call /init first.") -> None:
        super().__init__(
            code="NOT_INITIALIZED",
            message=message,
            status_code=503,
        )


class OperationInProgressError(APIError):
    def __init__(self, message: str = "An index init or rebuild is already running.") -> None:
        super().__init__(
            code="OPERATION_IN_PROGRESS",
            message=message,
            status_code=409,
        )


__all__ = ["APIError", "OperationInProgressError", "SessionUnavailableError"]
