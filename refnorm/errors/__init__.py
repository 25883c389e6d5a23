"""Error handling module for the normalization core."""

from .handlers import (
    ErrorHandler,
    ErrorContext,
    ErrorSeverity,
    ErrorCategory,
    BaseRefnormError,
    AIBackendError,
    RateLimitError,
    ResponseParseError,
    ClassificationError,
    ConfigurationError,
    TaxonomyUnavailableError,
    RetryableError,
    NonRetryableError,
)

__all__ = [
    "ErrorHandler",
    "ErrorContext",
    "ErrorSeverity",
    "ErrorCategory",
    "BaseRefnormError",
    "AIBackendError",
    "RateLimitError",
    "ResponseParseError",
    "ClassificationError",
    "ConfigurationError",
    "TaxonomyUnavailableError",
    "RetryableError",
    "NonRetryableError",
]
