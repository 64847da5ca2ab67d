"""Custom exceptions for the fitness analyst core."""

import logging
from typing import Any

logger = logging.getLogger(__name__)

# Exception type → safe user-facing message mapping
_SAFE_MESSAGES: dict[str, str] = {
    "RequestError": "The AI service is temporarily unavailable. Please try again.",
    "ValidationError": "The provided input is invalid. Please check and try again.",
    "ParseError": "The AI service returned an unexpected response. Please try again.",
    "PersistenceError": "Your profile could not be synced. Please try again.",
    "ChatError": "Sorry, I encountered an error. Please try again!",
    "ValueError": "The provided value is invalid.",
}

_DEFAULT_MESSAGE = "An error occurred. Please try again."


def sanitize_error(e: Exception) -> str:
    """Map an exception to a safe, user-facing error message.

    Args:
        e: The exception to sanitize.

    Returns:
        A safe, generic error message string.
    """
    # Walk the MRO to find the most specific matching type
    for cls in type(e).__mro__:
        safe_msg = _SAFE_MESSAGES.get(cls.__name__)
        if safe_msg:
            return safe_msg

    return _DEFAULT_MESSAGE


class FitnessAnalystError(Exception):
    """Base exception for all fitness analyst errors."""

    def __init__(
        self,
        message: str,
        code: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize the error.

        Args:
            message: Human-readable error message.
            code: Machine-readable error code.
            details: Additional error details.
        """
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details or {}


class RequestError(FitnessAnalystError):
    """An outbound HTTP call failed after exhausting its attempt budget."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        attempts: int = 1,
    ) -> None:
        """Initialize request error.

        Args:
            message: The last observed error message.
            status_code: Last HTTP status, if a response was received.
            attempts: Number of attempts made.
        """
        super().__init__(
            message=message,
            code="TRANSPORT_ERROR",
            details={"status_code": status_code, "attempts": attempts},
        )
        self.status_code = status_code
        self.attempts = attempts


# Transport-level failures are surfaced under this name as well.
TransportError = RequestError


class ValidationError(FitnessAnalystError):
    """Required input is missing or invalid; no external call was made."""

    def __init__(
        self, message: str, fields: list[str] | None = None, details: dict[str, Any] | None = None
    ) -> None:
        """Initialize validation error.

        Args:
            message: Error message.
            fields: Names of the invalid fields.
            details: Additional validation details.
        """
        error_details = details or {}
        if fields:
            error_details["fields"] = fields
        super().__init__(
            message=message,
            code="VALIDATION_ERROR",
            details=error_details,
        )


class ParseError(FitnessAnalystError):
    """The completion endpoint returned a malformed structured response."""

    def __init__(self, message: str, content: str | None = None) -> None:
        """Initialize parse error.

        Args:
            message: Error message.
            content: The raw content that failed to parse, if any.
        """
        details = {}
        if content is not None:
            details["content"] = content[:500]
        super().__init__(
            message=message,
            code="PARSE_ERROR",
            details=details,
        )


class PersistenceError(FitnessAnalystError):
    """Profile store read or write failed."""

    def __init__(self, message: str = "A database error occurred") -> None:
        """Initialize persistence error.

        Args:
            message: Error message.
        """
        super().__init__(
            message=message,
            code="PERSISTENCE_ERROR",
        )


class ChatError(FitnessAnalystError):
    """A chat turn failed. Contained by the conversation manager."""

    def __init__(self, message: str) -> None:
        """Initialize chat error.

        Args:
            message: Error message.
        """
        super().__init__(
            message=message,
            code="CHAT_ERROR",
        )
