"""
Structured error types for the cadence engine.

Every failure that crosses a job boundary is eventually turned into one of
two outcomes: retry later, or stop for good. The hierarchy below makes that
decision explicit on the exception itself, so workers raise meaningful
errors and the runner never has to guess from a bare ``Exception``.

Manifesto:
    - **Typed hierarchy:** transient, permanent, conflict and drift errors
      are distinct classes, not string codes
    - **Explicit retry semantics:** each error carries ``retryable``
    - **Rich context:** job, queue, schedule and series identifiers travel
      with the error for logging
    - **Conservative fallback:** untyped errors are classified by message
      markers, and anything ambiguous is retried

Architecture:
    ::

        ┌─────────────────────────────────────────────────────────────────┐
        │                        CadenceError                              │
        │      (category, retryable, retry_after, context, cause)         │
        ├─────────────────────────────────────────────────────────────────┤
        │                                                                  │
        │  TransientError            PermanentError                        │
        │  (retryable=True)          (retryable=False)                     │
        │       │                         │                                │
        │  JobTimeoutError           ValidationError                       │
        │  RateLimitError              ├── IntervalParseError              │
        │  DatabaseConnectionError     └── RecurrenceRuleError             │
        │                            ConfigError                           │
        │                              ├── UnknownJobKindError             │
        │                              └── UnknownTargetError              │
        │                            NotFoundError                         │
        │                            TemplateError                         │
        └─────────────────────────────────────────────────────────────────┘

        classify_error(exc)
        ┌────────────────────────────────────────────────────────────┐
        │ CadenceError        → its retryable flag                    │
        │ builtin I/O errors  → TRANSIENT                             │
        │ pydantic validation → PERMANENT                             │
        │ message markers     → transient first, then permanent       │
        │ anything else       → TRANSIENT                             │
        └────────────────────────────────────────────────────────────┘

Guardrails:
    ❌ DON'T: raise plain ``Exception`` from a worker for expected failures
    ✅ DO: raise a TransientError or PermanentError subclass

    ❌ DON'T: mark validation or template problems retryable
    ✅ DO: let ``default_retryable`` on the class decide

    ❌ DON'T: drop the original exception when wrapping
    ✅ DO: pass it as ``cause=``

Tags:
    error-handling, exception-hierarchy, retry-logic, classification,
    cadence, jobs

Doc-Types:
    - API Reference
    - Error Handling Guide
"""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from pydantic import ValidationError as PydanticValidationError


class ErrorCategory(str, Enum):
    """Standard error categories for classification and routing."""

    NETWORK = "NETWORK"
    DATABASE = "DATABASE"
    TIMEOUT = "TIMEOUT"
    RATE_LIMIT = "RATE_LIMIT"
    VALIDATION = "VALIDATION"
    CONFIG = "CONFIG"
    NOT_FOUND = "NOT_FOUND"
    TEMPLATE = "TEMPLATE"
    INTERNAL = "INTERNAL"
    UNKNOWN = "UNKNOWN"


class FailureClass(str, Enum):
    """Outcome of classifying a worker failure."""

    TRANSIENT = "transient"
    PERMANENT = "permanent"


@dataclass
class ErrorContext:
    """Structured metadata attached to an error.

    Only the fields that are set are emitted by ``to_dict()``; anything that
    has no dedicated field goes into ``metadata``.
    """

    job_id: str | None = None
    kind: str | None = None
    queue: str | None = None
    attempt: int | None = None
    schedule_id: str | None = None
    series_id: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result = {}
        for key in ["job_id", "kind", "queue", "attempt", "schedule_id", "series_id"]:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class CadenceError(Exception):
    """Base class for all cadence errors.

    Subclasses set ``default_category`` and ``default_retryable``; callers can
    override either per instance.

    Examples:
        >>> err = CadenceError("boom")
        >>> err.category
        <ErrorCategory.INTERNAL: 'INTERNAL'>
        >>> err.retryable
        False

        >>> err = TransientError("smtp timeout", retry_after=30)
        >>> (err.retryable, err.retry_after)
        (True, 30)
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        retry_after: float | None = None,
        context: ErrorContext | None = None,
        cause: BaseException | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.retryable = retryable if retryable is not None else self.default_retryable
        self.retry_after = retry_after
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> CadenceError:
        """Add context to this error (fluent API).

        Usage:
            raise NotFoundError("Series missing").with_context(series_id=sid)
        """
        for key, value in kwargs.items():
            if hasattr(self.context, key) and key != "metadata":
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result: dict[str, Any] = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        if self.retry_after is not None:
            result["retry_after"] = self.retry_after
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# TRANSIENT ERRORS (retried up to the job's attempt ceiling)
# =============================================================================


class TransientError(CadenceError):
    """Temporary failure; the job returns to the queue and is tried again."""

    default_category = ErrorCategory.NETWORK
    default_retryable = True


class JobTimeoutError(TransientError):
    """A job or one of its calls ran past its deadline."""

    default_category = ErrorCategory.TIMEOUT


class RateLimitError(TransientError):
    """An upstream service asked us to slow down."""

    default_category = ErrorCategory.RATE_LIMIT

    def __init__(self, message: str = "Rate limit exceeded", *, retry_after: float | None = 60, **kwargs: Any):
        super().__init__(message, retry_after=retry_after, **kwargs)


class DatabaseConnectionError(TransientError):
    """Database unreachable or the connection pool is exhausted."""

    default_category = ErrorCategory.DATABASE


# =============================================================================
# PERMANENT ERRORS (terminal, recorded as failed, never retried)
# =============================================================================


class PermanentError(CadenceError):
    """Terminal failure; retrying cannot change the outcome."""

    default_category = ErrorCategory.INTERNAL
    default_retryable = False


class ValidationError(PermanentError):
    """Invalid input payload or definition."""

    default_category = ErrorCategory.VALIDATION


class IntervalParseError(ValidationError):
    """An interval/duration string could not be parsed."""

    def __init__(self, value: str, message: str | None = None):
        super().__init__(message or f"invalid interval format: {value!r}")
        self.value = value


class RecurrenceRuleError(ValidationError):
    """A recurrence rule is malformed or uses an unsupported part."""


class ConfigError(PermanentError):
    """Bad configuration: cron expression, timezone, unregistered name."""

    default_category = ErrorCategory.CONFIG


class UnknownJobKindError(ConfigError):
    """No worker is registered for a job kind."""

    def __init__(self, kind: str, available: list[str] | None = None):
        known = ", ".join(available) if available else "none"
        super().__init__(f"No worker registered for kind {kind!r}. Registered kinds: {known}")
        self.kind = kind


class UnknownTargetError(ConfigError):
    """A schedule points at a target that is not registered."""

    def __init__(self, target: str):
        super().__init__(f"No target registered with name {target!r}")
        self.target = target


class NotFoundError(PermanentError):
    """A referenced row or resource does not exist."""

    default_category = ErrorCategory.NOT_FOUND


class TemplateError(PermanentError):
    """A notification template is missing or cannot be rendered."""

    default_category = ErrorCategory.TEMPLATE


# =============================================================================
# CLASSIFICATION
# =============================================================================

TRANSIENT_MARKERS: tuple[str, ...] = (
    "timeout",
    "timed out",
    "connection",
    "refused",
    "reset by peer",
    "rate limit",
    "throttl",
    "temporar",
    "unavailable",
    "network",
    "dial",
)

PERMANENT_MARKERS: tuple[str, ...] = (
    "invalid",
    "not found",
    "template",
    "malformed",
    "bounce",
    "complaint",
    "suppression",
    "authentication failed",
    "bad credentials",
    "unauthorized",
    "forbidden",
)

_TRANSIENT_TYPES: tuple[type[BaseException], ...] = (
    TimeoutError,
    ConnectionError,
    sqlite3.OperationalError,
)


def classify_error(error: BaseException) -> FailureClass:
    """Decide whether a worker failure should be retried.

    Typed errors are trusted first. Untyped errors are inspected for
    transience markers, then permanence markers; an error matching neither
    is retried so that ambiguous failures are never dropped silently.
    """
    if isinstance(error, CadenceError):
        return FailureClass.TRANSIENT if error.retryable else FailureClass.PERMANENT
    if isinstance(error, _TRANSIENT_TYPES):
        return FailureClass.TRANSIENT
    if isinstance(error, PydanticValidationError):
        return FailureClass.PERMANENT

    text = str(error).lower()
    if any(marker in text for marker in TRANSIENT_MARKERS):
        return FailureClass.TRANSIENT
    if any(marker in text for marker in PERMANENT_MARKERS):
        return FailureClass.PERMANENT
    return FailureClass.TRANSIENT


def is_retryable(error: BaseException) -> bool:
    """Check if an error is retryable."""
    return classify_error(error) is FailureClass.TRANSIENT


def get_retry_after(error: BaseException) -> float | None:
    """Get retry delay from error, if specified."""
    if isinstance(error, CadenceError):
        return error.retry_after
    return None


def categorize_error(error: BaseException) -> ErrorCategory:
    """Get the category of an error."""
    if isinstance(error, CadenceError):
        return error.category
    if isinstance(error, TimeoutError):
        return ErrorCategory.TIMEOUT
    if isinstance(error, (ConnectionError, OSError)):
        return ErrorCategory.NETWORK
    if isinstance(error, sqlite3.Error):
        return ErrorCategory.DATABASE
    if isinstance(error, (PydanticValidationError, ValueError)):
        return ErrorCategory.VALIDATION
    return ErrorCategory.UNKNOWN


__all__ = [
    "ErrorCategory",
    "FailureClass",
    "ErrorContext",
    "CadenceError",
    "TransientError",
    "JobTimeoutError",
    "RateLimitError",
    "DatabaseConnectionError",
    "PermanentError",
    "ValidationError",
    "IntervalParseError",
    "RecurrenceRuleError",
    "ConfigError",
    "UnknownJobKindError",
    "UnknownTargetError",
    "NotFoundError",
    "TemplateError",
    "TRANSIENT_MARKERS",
    "PERMANENT_MARKERS",
    "classify_error",
    "is_retryable",
    "get_retry_after",
    "categorize_error",
]
