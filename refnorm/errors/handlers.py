"""Error handlers with context preservation for better debugging."""

import asyncio
import logging
import threading
import traceback
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

import anthropic
import openai


TRANSPORT_ERRORS = (openai.APIConnectionError, anthropic.APIConnectionError)


class ErrorSeverity(Enum):
    """Error severity levels."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ErrorCategory(Enum):
    """Error categories for classification."""
    AI_BACKEND = "ai_backend"
    RATE_LIMIT = "rate_limit"
    RESPONSE = "response"
    CLASSIFICATION = "classification"
    CONFIGURATION = "configuration"
    UNKNOWN = "unknown"


@dataclass
class ErrorContext:
    """Context information for an error."""
    operation: str
    model: Optional[str] = None
    item_name: Optional[str] = None
    taxonomy_code: Optional[str] = None
    attempt: Optional[int] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=datetime.utcnow)

    def to_dict(self) -> Dict[str, Any]:
        """Convert context to dictionary."""
        return {
            "operation": self.operation,
            "model": self.model,
            "item_name": self.item_name,
            "taxonomy_code": self.taxonomy_code,
            "attempt": self.attempt,
            "metadata": self.metadata,
            "timestamp": self.timestamp.isoformat(),
        }


class BaseRefnormError(Exception):
    """Base exception for all normalization core errors."""

    def __init__(
        self,
        message: str,
        context: Optional[ErrorContext] = None,
        cause: Optional[Exception] = None,
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
        category: ErrorCategory = ErrorCategory.UNKNOWN,
        retryable: bool = False,
    ):
        super().__init__(message)
        self.message = message
        self.context = context
        self.cause = cause
        self.severity = severity
        self.category = category
        self.retryable = retryable
        self.timestamp = datetime.utcnow()

        self.stack_trace = traceback.format_exc()

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary for logging."""
        return {
            "error_type": self.__class__.__name__,
            "error_message": self.message,
            "context": self.context.to_dict() if self.context else None,
            "cause": str(self.cause) if self.cause else None,
            "severity": self.severity.value,
            "category": self.category.value,
            "retryable": self.retryable,
            "timestamp": self.timestamp.isoformat(),
        }


class AIBackendError(BaseRefnormError):
    """Error returned by the AI provider."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        context: Optional[ErrorContext] = None,
        cause: Optional[Exception] = None,
        response_body: Optional[str] = None,
    ):
        # No status code means the request never completed (connection reset, timeout)
        retryable = status_code in (408, 429, 500, 502, 503, 504) if status_code else True

        if status_code in (401, 403):
            severity = ErrorSeverity.CRITICAL
        elif status_code and status_code >= 500:
            severity = ErrorSeverity.HIGH
        else:
            severity = ErrorSeverity.MEDIUM

        super().__init__(
            message,
            context=context,
            cause=cause,
            severity=severity,
            category=ErrorCategory.AI_BACKEND,
            retryable=retryable,
        )
        self.status_code = status_code
        self.response_body = response_body


class RateLimitError(AIBackendError):
    """Rate limit exceeded error."""

    def __init__(
        self,
        message: str,
        retry_after: Optional[float] = None,
        context: Optional[ErrorContext] = None,
    ):
        super().__init__(message, status_code=429, context=context)
        self.retry_after = retry_after
        self.category = ErrorCategory.RATE_LIMIT
        self.retryable = True


class ResponseParseError(BaseRefnormError):
    """The AI answered, but not with something we can use."""

    def __init__(
        self,
        message: str,
        raw_response: Optional[str] = None,
        context: Optional[ErrorContext] = None,
    ):
        super().__init__(
            message,
            context=context,
            severity=ErrorSeverity.LOW,
            category=ErrorCategory.RESPONSE,
            retryable=True,
        )
        self.raw_response = raw_response


class ClassificationError(BaseRefnormError):
    """A strict classification attempt could not reach a leaf."""

    def __init__(
        self,
        message: str,
        context: Optional[ErrorContext] = None,
        cause: Optional[Exception] = None,
    ):
        super().__init__(
            message,
            context=context,
            cause=cause,
            severity=ErrorSeverity.MEDIUM,
            category=ErrorCategory.CLASSIFICATION,
            retryable=bool(cause is not None and getattr(cause, "retryable", False)),
        )


class ConfigurationError(BaseRefnormError):
    """A component could not be constructed from its configuration."""

    def __init__(
        self,
        message: str,
        context: Optional[ErrorContext] = None,
        cause: Optional[Exception] = None,
    ):
        super().__init__(
            message,
            context=context,
            cause=cause,
            severity=ErrorSeverity.HIGH,
            category=ErrorCategory.CONFIGURATION,
            retryable=False,
        )


class TaxonomyUnavailableError(ConfigurationError):
    """The taxonomy tree could not be loaded."""


class RetryableError(BaseRefnormError):
    """Generic retryable error."""

    def __init__(self, message: str, context: Optional[ErrorContext] = None):
        super().__init__(
            message,
            context=context,
            severity=ErrorSeverity.MEDIUM,
            retryable=True,
        )


class NonRetryableError(BaseRefnormError):
    """Generic non-retryable error."""

    def __init__(self, message: str, context: Optional[ErrorContext] = None):
        super().__init__(
            message,
            context=context,
            severity=ErrorSeverity.HIGH,
            retryable=False,
        )


class ErrorHandler:
    """Centralized error handler with context preservation."""

    def __init__(self, max_history_size: int = 1000):
        self._context_stack = threading.local()
        self._lock = threading.Lock()
        self.logger = logging.getLogger(__name__)

        self._error_counts: Dict[str, int] = {}
        self._error_history: List[BaseRefnormError] = []
        self._max_history_size = max_history_size

    @contextmanager
    def error_context(self, **kwargs):
        """Context manager for error context.

        Usage:
            with error_handler.error_context(operation="classify_level", model="GLM-4.5"):
                ...
        """
        if not hasattr(self._context_stack, "contexts"):
            self._context_stack.contexts = []

        context = ErrorContext(**kwargs)
        self._context_stack.contexts.append(context)

        try:
            yield context
        finally:
            if self._context_stack.contexts:
                self._context_stack.contexts.pop()

    def get_current_context(self) -> Optional[ErrorContext]:
        """Get current error context."""
        if hasattr(self._context_stack, "contexts") and self._context_stack.contexts:
            return self._context_stack.contexts[-1]
        return None

    def handle_error(
        self,
        error: Exception,
        operation: Optional[str] = None,
        reraise: bool = True,
    ) -> BaseRefnormError:
        """Handle an error with context preservation.

        Args:
            error: The error to handle
            operation: Operation being performed
            reraise: Whether to re-raise the wrapped error

        Returns:
            The wrapped error
        """
        context = self.get_current_context()
        if operation and context:
            context.operation = operation

        if isinstance(error, BaseRefnormError):
            wrapped_error = error
            if not wrapped_error.context and context:
                wrapped_error.context = context
        else:
            wrapped_error = self.wrap_error(error, context)

        self._log_error(wrapped_error)
        self._update_error_stats(wrapped_error)

        if reraise:
            if wrapped_error is error:
                raise wrapped_error
            raise wrapped_error from error

        return wrapped_error

    def wrap_error(self, error: Exception, context: Optional[ErrorContext] = None) -> BaseRefnormError:
        """Wrap a foreign exception in the matching error type."""
        if isinstance(error, BaseRefnormError):
            return error

        error_str = str(error) or type(error).__name__

        if isinstance(error, (asyncio.TimeoutError, TimeoutError, ConnectionError)):
            return AIBackendError(error_str, context=context, cause=error)

        # SDK timeouts subclass APIConnectionError and carry no status code
        if isinstance(error, TRANSPORT_ERRORS):
            return AIBackendError(error_str, status_code=None, context=context, cause=error)

        status_code = getattr(error, "status_code", None)
        if status_code is None and hasattr(error, "response"):
            status_code = getattr(error.response, "status_code", None)

        if status_code == 429 or ("rate" in error_str.lower() and "limit" in error_str.lower()):
            return RateLimitError(error_str, context=context)
        if isinstance(status_code, int):
            return AIBackendError(
                error_str,
                status_code=status_code,
                context=context,
                cause=error,
                response_body=getattr(getattr(error, "response", None), "text", None),
            )
        if isinstance(error, ValueError):
            return ResponseParseError(error_str, context=context)

        return BaseRefnormError(error_str, context=context, cause=error)

    def _log_error(self, error: BaseRefnormError) -> None:
        """Log error with appropriate severity."""
        error_dict = error.to_dict()

        if error.severity == ErrorSeverity.CRITICAL:
            self.logger.critical(f"Critical error: {error.message}", extra={"error": error_dict})
        elif error.severity == ErrorSeverity.HIGH:
            self.logger.error(f"Error: {error.message}", extra={"error": error_dict})
        elif error.severity == ErrorSeverity.MEDIUM:
            self.logger.warning(f"Warning: {error.message}", extra={"error": error_dict})
        else:
            self.logger.info(f"Info: {error.message}", extra={"error": error_dict})

    def _update_error_stats(self, error: BaseRefnormError) -> None:
        """Update error statistics."""
        error_type = error.__class__.__name__

        with self._lock:
            self._error_counts[error_type] = self._error_counts.get(error_type, 0) + 1
            self._error_history.append(error)

            if len(self._error_history) > self._max_history_size:
                self._error_history = self._error_history[-self._max_history_size:]

    def get_error_stats(self) -> Dict[str, Any]:
        """Get error statistics."""
        with self._lock:
            recent_errors = self._error_history[-100:]
            counts = self._error_counts.copy()

        severity_dist = {severity.value: 0 for severity in ErrorSeverity}
        for error in recent_errors:
            severity_dist[error.severity.value] += 1

        return {
            "total_errors": sum(counts.values()),
            "error_counts": counts,
            "severity_distribution": severity_dist,
            "retryable_errors": sum(1 for e in recent_errors if e.retryable),
            "non_retryable_errors": sum(1 for e in recent_errors if not e.retryable),
        }

    def should_retry(self, error: BaseRefnormError) -> bool:
        """Determine if an error should be retried."""
        return error.retryable
