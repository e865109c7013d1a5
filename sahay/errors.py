"""Failure taxonomy shared by the resolver, the data gateway and the handlers.

Every failure a capability can report maps onto one ``ErrorType``.  Handlers
catch ``SchedulingError`` and turn it into the structured result dict the
reasoning service reads; nothing in this hierarchy is meant to reach the
HTTP layer.
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorType(str, Enum):
    NOT_FOUND = "NotFound"
    INVALID_INPUT = "InvalidInput"
    UNAVAILABLE = "Unavailable"
    TIMEOUT = "Timeout"
    CONFLICT = "Conflict"


class SchedulingError(Exception):
    """Base class for every failure a capability handler can surface."""

    error_type: ErrorType = ErrorType.UNAVAILABLE

    def __init__(self, message: str, **details: Any):
        self.message = message
        self.details = details
        super().__init__(message)

    def to_result(self) -> dict[str, Any]:
        """Serialise as a failed capability result."""
        result: dict[str, Any] = {
            "success": False,
            "message": self.message,
            "error_type": self.error_type.value,
        }
        result.update(self.details)
        return result


class InvalidInputError(SchedulingError):
    """Missing or malformed arguments; the caller must fix them."""

    error_type = ErrorType.INVALID_INPUT


class InvalidDateError(InvalidInputError):
    """A date expression that matches no known pattern or does not exist."""


class NotFoundError(SchedulingError):
    """The entity is genuinely absent from the store."""

    error_type = ErrorType.NOT_FOUND


class ConflictError(SchedulingError):
    """A write collided with existing data; different parameters are needed."""

    error_type = ErrorType.CONFLICT


class AmbiguousProviderError(ConflictError):
    """More than one provider matched and none could be preferred."""

    def __init__(self, query: str, candidates: list[str]):
        super().__init__(
            f"More than one doctor matches '{query}'. "
            "Ask the patient which one they mean.",
            candidates=candidates,
        )
        self.query = query
        self.candidates = candidates


class UnavailableError(SchedulingError):
    """Transient infrastructure failure that outlived every retry."""

    error_type = ErrorType.UNAVAILABLE


class GatewayTimeoutError(SchedulingError):
    """A data operation exceeded its overall deadline."""

    error_type = ErrorType.TIMEOUT
