"""Tests for the error hierarchy and failure classification."""

import sqlite3

import pytest
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from cadence.core.errors import (
    CadenceError,
    ConfigError,
    ErrorCategory,
    FailureClass,
    IntervalParseError,
    NotFoundError,
    PermanentError,
    RateLimitError,
    TemplateError,
    TransientError,
    UnknownJobKindError,
    categorize_error,
    classify_error,
    get_retry_after,
    is_retryable,
)


class TestErrorHierarchy:
    """Typed errors carry their own retry semantics."""

    def test_transient_is_retryable(self):
        err = TransientError("smtp timeout")
        assert err.retryable is True
        assert err.category is ErrorCategory.NETWORK

    def test_permanent_is_not_retryable(self):
        assert PermanentError("bad").retryable is False
        assert TemplateError("missing").category is ErrorCategory.TEMPLATE

    def test_retryable_override(self):
        err = PermanentError("odd", retryable=True)
        assert err.retryable is True

    def test_rate_limit_has_retry_after(self):
        err = RateLimitError()
        assert get_retry_after(err) == 60
        assert get_retry_after(ValueError("x")) is None

    def test_cause_is_chained(self):
        cause = OSError("disk")
        err = CadenceError("wrapped", cause=cause)
        assert err.__cause__ is cause
        assert err.to_dict()["cause"] == "disk"

    def test_with_context(self):
        err = NotFoundError("Series not found").with_context(series_id="s1", table="bookings")
        data = err.to_dict()
        assert data["context"]["series_id"] == "s1"
        assert data["context"]["table"] == "bookings"
        assert data["error_type"] == "NotFoundError"

    def test_unknown_kind_lists_registered(self):
        err = UnknownJobKindError("nope", ["a", "b"])
        assert "a, b" in str(err)
        assert isinstance(err, ConfigError)

    def test_interval_parse_error_keeps_value(self):
        err = IntervalParseError("forever")
        assert err.value == "forever"
        assert "forever" in str(err)


class TestClassifyError:
    """Classification of typed and untyped worker failures."""

    @pytest.mark.parametrize(
        "error",
        [
            TimeoutError("slow"),
            ConnectionError("reset"),
            sqlite3.OperationalError("database is locked"),
            RuntimeError("connection refused"),
            RuntimeError("429 rate limit exceeded"),
            RuntimeError("service temporarily unavailable"),
            RuntimeError("something odd happened"),
        ],
    )
    def test_transient(self, error):
        assert classify_error(error) is FailureClass.TRANSIENT
        assert is_retryable(error)

    @pytest.mark.parametrize(
        "error",
        [
            ValueError("invalid email address"),
            RuntimeError("recipient not found"),
            RuntimeError("message bounced: hard bounce"),
            RuntimeError("550 address on suppression list"),
            RuntimeError("Authentication failed"),
        ],
    )
    def test_permanent(self, error):
        assert classify_error(error) is FailureClass.PERMANENT

    def test_transient_markers_win(self):
        # both "timeout" and "invalid" appear
        assert classify_error(RuntimeError("invalid response after timeout")) is FailureClass.TRANSIENT

    def test_typed_errors_trusted(self):
        assert classify_error(TemplateError("timeout in template")) is FailureClass.PERMANENT
        assert classify_error(TransientError("invalid")) is FailureClass.TRANSIENT

    def test_pydantic_validation_is_permanent(self):
        class Args(BaseModel):
            n: int

        with pytest.raises(PydanticValidationError) as exc_info:
            Args(n="x")
        assert classify_error(exc_info.value) is FailureClass.PERMANENT


class TestCategorizeError:
    def test_builtin_categories(self):
        assert categorize_error(TimeoutError()) is ErrorCategory.TIMEOUT
        assert categorize_error(ConnectionError()) is ErrorCategory.NETWORK
        assert categorize_error(sqlite3.IntegrityError()) is ErrorCategory.DATABASE
        assert categorize_error(ValueError()) is ErrorCategory.VALIDATION
        assert categorize_error(KeyError()) is ErrorCategory.UNKNOWN
