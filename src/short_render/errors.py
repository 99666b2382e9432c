"""Error types for short-render.

Every error raised by the package derives from ShortRenderError and carries
a category that tells callers whether retrying can help.
"""

from __future__ import annotations

from enum import Enum


class ErrorCategory(str, Enum):
    """Categories of errors for handling decisions."""

    TRANSIENT = "transient"  # Network, 503 - can retry
    VALIDATION = "validation"  # Bad input - don't retry
    CONFIGURATION = "configuration"  # Missing credentials - don't retry
    EXTERNAL = "external"  # Upstream service rejected the call
    STORAGE = "storage"  # Usage-log store unreachable or corrupt
    INTERNAL = "internal"  # Bug in code - don't retry


class ShortRenderError(Exception):
    """Base exception for short-render errors.

    Attributes:
        message: Human-readable error message
        category: Error category for handling
        context: Additional context information
        recoverable: Whether retrying may succeed
    """

    category: ErrorCategory = ErrorCategory.INTERNAL

    def __init__(
        self,
        message: str,
        context: dict | None = None,
        recoverable: bool = False,
    ):
        super().__init__(message)
        self.message = message
        self.context = context or {}
        self.recoverable = recoverable

    def __str__(self) -> str:
        if self.context:
            return f"{self.message} (context: {self.context})"
        return self.message


class TransientError(ShortRenderError):
    """Temporary failure such as a sleeping upstream instance."""

    category = ErrorCategory.TRANSIENT

    def __init__(self, message: str, context: dict | None = None):
        super().__init__(message, context, recoverable=True)


class ValidationError(ShortRenderError):
    """Input validation error.

    Examples: unrecognised video reference, malformed month string.
    """

    category = ErrorCategory.VALIDATION

    def __init__(self, message: str, context: dict | None = None):
        super().__init__(message, context, recoverable=False)


class ConfigurationError(ShortRenderError):
    """Configuration error.

    Examples: missing render API key, service with no quota configured.
    """

    category = ErrorCategory.CONFIGURATION

    def __init__(self, message: str, context: dict | None = None):
        super().__init__(message, context, recoverable=False)


class ExternalServiceError(ShortRenderError):
    """An external service answered with an error."""

    category = ErrorCategory.EXTERNAL

    def __init__(
        self,
        message: str,
        context: dict | None = None,
        recoverable: bool = False,
    ):
        super().__init__(message, context, recoverable=recoverable)


class StorageError(ShortRenderError):
    """Usage-log store read or write failed."""

    category = ErrorCategory.STORAGE

    def __init__(self, message: str, context: dict | None = None):
        super().__init__(message, context, recoverable=True)


class ExtractionError(ExternalServiceError):
    """The locator could not produce a playable media URL.

    Attributes:
        reason: Failure reason reported by the locator
        attempts: Number of upstream attempts made
    """

    def __init__(self, reason: str, attempts: int, source_url: str = ""):
        super().__init__(
            f"Media extraction failed: {reason}",
            context={"source_url": source_url, "attempts": attempts},
        )
        self.reason = reason
        self.attempts = attempts


class RenderFailedError(ExternalServiceError):
    """The render service reported a failed job or asset."""


class RenderTimeoutError(ExternalServiceError):
    """A render job or asset did not finish within the polling budget."""

    def __init__(self, message: str, context: dict | None = None):
        super().__init__(message, context, recoverable=True)


def format_error_for_display(error: Exception) -> str:
    """Format an error message for user display.

    Args:
        error: Error to format

    Returns:
        Human-readable error message
    """
    if isinstance(error, ShortRenderError):
        category = error.category.value
        if error.context:
            context_str = ", ".join(f"{k}={v}" for k, v in error.context.items())
            return f"[{category}] {error.message} ({context_str})"
        return f"[{category}] {error.message}"

    return f"[error] {type(error).__name__}: {error}"
