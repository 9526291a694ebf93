"""
Centralized error taxonomy and classification.

Raw provider failures are mapped onto a closed set of error codes by matching
substrings of the exception message. Each resulting AppError carries an HTTP
status and a suggestion suitable for showing to the operator.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional


class ErrorCode(str, Enum):
    # API key errors
    API_KEY_MISSING = "API_KEY_MISSING"
    API_KEY_INVALID = "API_KEY_INVALID"
    API_KEY_PLACEHOLDER = "API_KEY_PLACEHOLDER"

    # Request errors
    REQUEST_TIMEOUT = "REQUEST_TIMEOUT"
    NETWORK_ERROR = "NETWORK_ERROR"
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"

    # Content errors
    CONTENT_FILTERED = "CONTENT_FILTERED"
    INVALID_RESPONSE = "INVALID_RESPONSE"

    # Validation errors
    INVALID_INPUT = "INVALID_INPUT"
    FILE_TOO_LARGE = "FILE_TOO_LARGE"
    UNSUPPORTED_FILE_TYPE = "UNSUPPORTED_FILE_TYPE"
    TOO_MANY_FILES = "TOO_MANY_FILES"

    # Provider errors
    PROVIDER_UNAVAILABLE = "PROVIDER_UNAVAILABLE"
    MODEL_NOT_FOUND = "MODEL_NOT_FOUND"

    UNKNOWN_ERROR = "UNKNOWN_ERROR"


@dataclass(frozen=True)
class AppError:
    code: ErrorCode
    message: str
    details: Optional[str] = None
    suggestion: Optional[str] = None
    status_code: int = 500

    def to_response(self) -> Dict[str, str]:
        """Shape used for JSON error bodies."""
        body = {"error": self.message, "code": self.code.value}
        if self.details:
            body["details"] = self.details
        if self.suggestion:
            body["suggestion"] = self.suggestion
        return body

    def to_log(self, context: Optional[str] = None) -> str:
        parts = [
            f"[{context}]" if context else "",
            f"Error {self.code.value}:",
            self.message,
            f"({self.details})" if self.details else "",
        ]
        return " ".join(part for part in parts if part)


class CaptionerError(Exception):
    """Exception carrying an already-classified AppError."""

    def __init__(self, error: AppError, headers: Optional[Dict[str, str]] = None):
        super().__init__(error.details or error.message)
        self.error = error
        self.headers = headers or {}


class UnknownProviderError(CaptionerError):
    def __init__(self, provider_id: str):
        super().__init__(create_error(
            ErrorCode.INVALID_INPUT,
            "Unknown provider",
            f"Unknown provider: {provider_id}",
            "Choose one of: gemini, openai, openrouter, together, groq, ollama.",
            400,
        ))
        self.provider_id = provider_id


class InvalidResponseError(CaptionerError):
    def __init__(self, details: str):
        super().__init__(create_error(
            ErrorCode.INVALID_RESPONSE,
            "The AI provider returned an empty or invalid response",
            details,
            "Try again or choose a different model.",
            502,
        ))


class DirectoryTraversalError(ValueError):
    """Raised when a filename would resolve outside its base directory."""

    def __init__(self, filename: str, base_dir: str):
        super().__init__(f"Directory traversal detected: {filename!r} escapes {base_dir!r}")
        self.filename = filename
        self.base_dir = base_dir


def create_error(code: ErrorCode, message: str, details: Optional[str] = None,
                 suggestion: Optional[str] = None, status_code: int = 500) -> AppError:
    return AppError(code, message, details, suggestion, status_code)


def invalid_input(message: str, details: Optional[str] = None, suggestion: Optional[str] = None,
                  code: ErrorCode = ErrorCode.INVALID_INPUT, status_code: int = 400) -> CaptionerError:
    """Build a validation error ready to be raised at the API boundary."""
    return CaptionerError(create_error(code, message, details, suggestion, status_code))


TIMEOUT_MARKERS = ("timeout", "timed out", "etimedout", "econnaborted")
RATE_LIMIT_MARKERS = ("429", "rate limit")
CONTENT_FILTER_MARKERS = ("prohibited_content", "safety", "blocked", "filtered")
NETWORK_MARKERS = (
    "network", "enotfound", "econnrefused", "fetch failed",
    "connection refused", "failed to establish a new connection", "name or service not known",
)
UNAVAILABLE_MARKERS = ("503", "service unavailable")
NOT_FOUND_MARKERS = ("404", "model not found")


def _contains_any(text: str, markers) -> bool:
    return any(marker in text for marker in markers)


def classify(error, context: str = "") -> AppError:
    """Map a raw failure to an AppError. The first matching rule wins."""
    if isinstance(error, CaptionerError):
        return error.error

    error_message = str(error)
    lower = error_message.lower()

    if "api key" in lower or "api_key" in lower:
        if "not set" in lower or "missing" in lower:
            return create_error(
                ErrorCode.API_KEY_MISSING,
                "API key is not configured",
                error_message,
                "Please set the required API key in your .env file and restart the application.",
                500,
            )
        if "invalid" in lower or "unauthorized" in lower or "401" in lower:
            return create_error(
                ErrorCode.API_KEY_INVALID,
                "API key is invalid or unauthorized",
                error_message,
                "Please verify your API key is correct in the .env file.",
                401,
            )
        if "placeholder" in lower:
            return create_error(
                ErrorCode.API_KEY_PLACEHOLDER,
                "API key is set to placeholder value",
                error_message,
                "Please update your .env file with your actual API key.",
                500,
            )

    if _contains_any(lower, TIMEOUT_MARKERS):
        return create_error(
            ErrorCode.REQUEST_TIMEOUT,
            "Request timed out",
            f"{context + ': ' if context else ''}The API request took too long to complete.",
            "This may be due to network issues or high API load. Please try again.",
            504,
        )

    if _contains_any(lower, RATE_LIMIT_MARKERS):
        return create_error(
            ErrorCode.RATE_LIMIT_EXCEEDED,
            "Rate limit exceeded",
            error_message,
            "Please wait a few moments before trying again. Consider upgrading your API plan for higher limits.",
            429,
        )

    if _contains_any(lower, CONTENT_FILTER_MARKERS):
        return create_error(
            ErrorCode.CONTENT_FILTERED,
            "Content was filtered by safety settings",
            error_message,
            "The image may contain content that violates the AI provider's safety policies. Try a different image.",
            400,
        )

    if _contains_any(lower, NETWORK_MARKERS):
        return create_error(
            ErrorCode.NETWORK_ERROR,
            "Network connection error",
            error_message,
            "Please check your internet connection and try again. If using a local provider, ensure it's running.",
            503,
        )

    if _contains_any(lower, UNAVAILABLE_MARKERS):
        return create_error(
            ErrorCode.PROVIDER_UNAVAILABLE,
            "AI provider is temporarily unavailable",
            error_message,
            "The AI service may be experiencing issues. Please try again later.",
            503,
        )

    if _contains_any(lower, NOT_FOUND_MARKERS):
        return create_error(
            ErrorCode.MODEL_NOT_FOUND,
            "Model not found",
            error_message,
            "The selected model may not be available. Please try a different model.",
            404,
        )

    suggestion = "Please try again or contact support if the issue persists."
    return create_error(
        ErrorCode.UNKNOWN_ERROR,
        "An unexpected error occurred",
        error_message,
        f"Error in {context}. {suggestion}" if context else suggestion,
        500,
    )
