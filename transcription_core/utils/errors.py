"""Custom exception hierarchy for the transcription core.

All exceptions inherit from TranscriptionError, enabling targeted handling
at the HTTP boundary while preserving specific failure context. Each error
carries a ``retryable`` flag consulted by the retry executor and a
``user_message`` that is safe to show to end users.
"""

from datetime import UTC, datetime
from typing import Any

GENERIC_PROVIDER_MESSAGE = (
    "The transcription service is temporarily unavailable. Please try again later."
)
TIMEOUT_MESSAGE = "This is taking too long. Try a shorter audio file."

# 429: rate limit, 500/502/503: provider trouble that usually clears up
RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503})


class TranscriptionError(Exception):
    """Base exception for all transcription core errors."""

    retryable: bool = False

    def __init__(self, message: str) -> None:
        self.timestamp = datetime.now(UTC).isoformat()
        super().__init__(message)

    @property
    def message(self) -> str:
        return str(self)

    @property
    def user_message(self) -> str:
        return GENERIC_PROVIDER_MESSAGE

    def to_dict(self) -> dict[str, Any]:
        """Serialize the error for logging and API responses."""
        return {
            "name": type(self).__name__,
            "message": self.message,
            "user_message": self.user_message,
            "timestamp": self.timestamp,
            "retryable": self.retryable,
        }


class ValidationError(TranscriptionError):
    """Raised when caller input fails pre-flight validation.

    Never retryable: the input itself has to change.
    """

    def __init__(self, field: str, reason: str, value: Any = None) -> None:
        self.field = field
        self.reason = reason
        self.value = value
        super().__init__(f"Validation failed for '{field}': {reason}")

    @property
    def user_message(self) -> str:
        return self.reason

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["field"] = self.field
        data["reason"] = self.reason
        # Only simple values are echoed back; audio payloads never are
        if isinstance(self.value, (str, int, float)):
            data["value"] = self.value
        return data


class ConfigurationError(TranscriptionError):
    """Raised when a provider is used without its credential configured."""

    def __init__(self, message: str, provider: str | None = None) -> None:
        self.provider = provider
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["provider"] = self.provider
        return data


class APIError(TranscriptionError):
    """Raised when a remote speech provider rejects or fails a request.

    ``terminal`` marks a failure the provider reported for the job itself.
    Resubmitting the same audio will not help, so it is never retryable
    whatever its status code.
    """

    def __init__(
        self,
        provider: str,
        status_code: int,
        message: str,
        details: dict[str, Any] | None = None,
        terminal: bool = False,
    ) -> None:
        self.provider = provider
        self.status_code = status_code
        self.details = details or {}
        self.terminal = terminal
        self.retryable = not terminal and status_code in RETRYABLE_STATUS_CODES
        super().__init__(message)

    def __str__(self) -> str:
        return f"[{self.provider} {self.status_code}] {super().__str__()}"

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["provider"] = self.provider
        data["status_code"] = self.status_code
        data["details"] = self.details
        data["terminal"] = self.terminal
        return data


class TranscriptionTimeoutError(TranscriptionError):
    """Raised when a local wall-clock bound is exceeded.

    The outcome on the provider side is unknown, which is why this is kept
    apart from APIError.
    """

    retryable = True

    def __init__(self, operation: str, timeout_seconds: float) -> None:
        self.operation = operation
        self.timeout_seconds = timeout_seconds
        super().__init__(f"{operation} timed out after {timeout_seconds:g}s")

    @property
    def user_message(self) -> str:
        return TIMEOUT_MESSAGE

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["operation"] = self.operation
        data["timeout_seconds"] = self.timeout_seconds
        return data


class StorageError(TranscriptionError):
    """Raised when the usage-log sink cannot record an entry."""

    retryable = True

    def __init__(self, message: str, operation: str | None = None) -> None:
        self.operation = operation
        super().__init__(message)


def is_retryable(exc: BaseException) -> bool:
    """Generic retryability classifier.

    Unknown exceptions are treated as permanent.
    """
    if isinstance(exc, TranscriptionError):
        return exc.retryable
    return False
