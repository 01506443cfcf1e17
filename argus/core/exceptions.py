"""Custom exception hierarchy."""

from typing import Optional


class AppError(Exception):
    """Base exception for application errors."""
    def __init__(self, message: str, original_error: Exception = None):
        super().__init__(message)
        self.original_error = original_error


class APIClientError(AppError):
    """Raised when an external API call fails."""
    def __init__(
        self,
        message: str,
        original_error: Exception = None,
        status_code: Optional[int] = None,
    ):
        super().__init__(message, original_error)
        self.status_code = status_code


class APITimeoutError(APIClientError):
    """Raised when an external API call times out."""
    pass


class ValidationError(AppError):
    """Raised when input validation fails."""
    pass


class InferenceError(AppError):
    """Base exception for inference service failures."""
    pass


class RateLimitedError(InferenceError):
    """The inference service rejected the call with a rate limit (HTTP 429).

    The only failure the gateway retries.
    """
    def __init__(
        self,
        message: str,
        original_error: Exception = None,
        retry_after: Optional[float] = None,
    ):
        super().__init__(message, original_error)
        self.retry_after = retry_after


class PipelineError(AppError):
    """Base exception for pipeline errors."""
    pass


class PipelineQueueFullError(PipelineError):
    """Raised when the background worker queue is at capacity."""
    pass


class UnknownModuleError(PipelineError):
    """Raised when a module name is outside the extraction allow-list."""
    pass


class UnknownCategoryError(PipelineError):
    """Raised when a taxonomy category does not exist."""
    pass


class DocumentNotFoundError(AppError):
    """Raised when a document is not found."""
    pass
