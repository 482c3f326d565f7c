"""
Tests for the Result monad and its CA error taxonomy.

Tests cover:
  - Success/Failure creation and introspection
  - map, flat_map, ensure transformations
  - either, peek and peek_failure
  - attempt(): exception → CaError mapping
  - Pattern matching
"""

from __future__ import annotations

import pytest

from ca_manager.domain.errors import (
    DatastoreLockedError,
    InvalidArgumentError,
    InvalidPasswordError,
    NotFoundError,
    StoreIOError,
    UnknownKeyTypeError,
    error_code_for,
)
from ca_manager.domain.failure import CaError, FailureDescription
from ca_manager.domain.result import Failure, Result, Success

# ═══════════════════════════════════════════════════════════════
# 1. Creation & Introspection
# ═══════════════════════════════════════════════════════════════


class TestCreation:
    def test_success_wraps_value(self):
        result = Result.success(42)
        assert result.is_success()
        assert not result.is_failure()
        assert result.value() == 42

    def test_success_rejects_none(self):
        with pytest.raises(TypeError, match="must not be None"):
            Success(None)

    def test_failure_with_code_and_message(self):
        result = Result.failure(CaError.NOT_FOUND, "Template not known")
        assert result.is_failure()
        assert result.error().code is CaError.NOT_FOUND
        assert result.error().message == "Template not known"

    def test_failure_is_falsy(self):
        assert not Result.failure(CaError.IO_FAILURE, "x")
        assert Result.success(0)

    def test_value_on_failure_raises(self):
        with pytest.raises(ValueError, match="Cannot get value"):
            Result.failure(CaError.IO_FAILURE, "boom").value()

    def test_error_on_success_raises(self):
        with pytest.raises(ValueError, match="Cannot get error"):
            Result.success(1).error()


# ═══════════════════════════════════════════════════════════════
# 2. Transformations
# ═══════════════════════════════════════════════════════════════


class TestTransformations:
    def test_map_transforms_success_value(self):
        assert Result.success(41).map(lambda x: x + 1).value() == 42

    def test_map_short_circuits_on_failure(self):
        calls = []
        result = Result.failure(CaError.LOCKED_DATASTORE, "locked").map(lambda x: calls.append(x))
        assert result.error().code is CaError.LOCKED_DATASTORE
        assert calls == []

    def test_flat_map_stops_at_first_failure(self):
        result = (
            Result.success(1)
            .flat_map(lambda _: Result.failure(CaError.INVALID_PASSWORD, "wrong"))
            .flat_map(lambda _: Result.failure(CaError.IO_FAILURE, "never"))
        )
        assert result.error().code is CaError.INVALID_PASSWORD

    def test_ensure_fails_when_predicate_false(self):
        result = Result.success(0).ensure(lambda d: d > 0, CaError.INVALID_ARGUMENT, "Expiry must be positive")
        assert result.error().code is CaError.INVALID_ARGUMENT
        assert result.error().message == "Expiry must be positive"

    def test_ensure_passes_when_predicate_true(self):
        assert Result.success(30).ensure(lambda d: d > 0, CaError.INVALID_ARGUMENT).value() == 30

    def test_either_selects_branch(self):
        assert Result.success(2).either(lambda v: v * 2, lambda e: -1) == 4
        assert Result.failure(CaError.IO_FAILURE, "x").either(lambda v: v, lambda e: e.code.name) == "IO_FAILURE"


class TestSideEffects:
    def test_peek_executes_on_success_only(self):
        seen = []
        Result.success(1).peek(seen.append)
        Result.failure(CaError.IO_FAILURE, "x").peek(seen.append)
        assert seen == [1]

    def test_peek_failure_executes_on_failure_only(self):
        seen = []
        Result.failure(CaError.IO_FAILURE, "x").peek_failure(lambda e: seen.append(e.code))
        Result.success(1).peek_failure(lambda e: seen.append(e.code))
        assert seen == [CaError.IO_FAILURE]


# ═══════════════════════════════════════════════════════════════
# 3. Static factories
# ═══════════════════════════════════════════════════════════════


class TestAttempt:
    """
    GIVEN a computation that raises
    WHEN wrapped with Result.attempt
    THEN the failure code is derived from the exception type.
    """

    @pytest.mark.parametrize(
        ("exception", "code"),
        [
            (DatastoreLockedError(), CaError.LOCKED_DATASTORE),
            (InvalidPasswordError(), CaError.INVALID_PASSWORD),
            (NotFoundError("x"), CaError.NOT_FOUND),
            (InvalidArgumentError("x"), CaError.INVALID_ARGUMENT),
            (UnknownKeyTypeError("x"), CaError.INVALID_ARGUMENT),
            (StoreIOError("x"), CaError.IO_FAILURE),
            (KeyError("x"), CaError.NOT_FOUND),
            (ValueError("x"), CaError.INVALID_ARGUMENT),
            (TypeError("x"), CaError.INVALID_ARGUMENT),
            (FileNotFoundError("x"), CaError.IO_FAILURE),
            (RuntimeError("x"), CaError.IO_FAILURE),
        ],
    )
    def test_exception_maps_to_code(self, exception: Exception, code: CaError):
        def boom():
            raise exception

        result = Result.attempt(boom, "Operation failed")
        assert result.error().code is code
        assert result.error().exception is exception
        assert result.error().message.startswith("Operation failed: ")

    def test_success_when_no_exception(self):
        assert Result.attempt(lambda: 5, "never").value() == 5

    def test_error_code_for_default_messages(self):
        assert str(DatastoreLockedError()) == "Certificate authority is locked"
        assert str(InvalidPasswordError()) == "Invalid password"
        assert error_code_for(OSError()) is CaError.IO_FAILURE


# ═══════════════════════════════════════════════════════════════
# 4. Pattern matching, equality, failure details
# ═══════════════════════════════════════════════════════════════


class TestPatternMatching:
    def test_match_success_and_failure(self):
        def describe(result: Result[int]) -> str:
            match result:
                case Success(value):
                    return f"ok {value}"
                case Failure(error) if error.code is CaError.LOCKED_DATASTORE:
                    return "locked"
                case Failure(error):
                    return error.code.name
            return "unreachable"

        assert describe(Result.success(1)) == "ok 1"
        assert describe(Result.failure(CaError.LOCKED_DATASTORE, "x")) == "locked"
        assert describe(Result.failure(CaError.NOT_FOUND, "x")) == "NOT_FOUND"

    def test_equality_and_repr(self):
        assert Result.success(1) == Result.success(1)
        assert Result.failure(CaError.NOT_FOUND, "x") == Result.failure(CaError.NOT_FOUND, "x")
        assert Result.success(1) != Result.failure(CaError.NOT_FOUND, "x")
        assert repr(Result.success(1)) == "Success(1)"
        assert repr(Result.failure(CaError.NOT_FOUND, "x")) == "Failure(NOT_FOUND: 'x')"


class TestFailureDescription:
    def test_detail_includes_exception_text(self):
        description = FailureDescription.create(CaError.IO_FAILURE, "Unable to read", OSError("disk full"))
        assert description.detail() == "Unable to read: disk full"

    def test_full_stack_trace_without_exception_is_message(self):
        assert FailureDescription(CaError.NOT_FOUND, "gone").full_stack_trace() == "gone"

    def test_full_stack_trace_includes_exception_type(self):
        try:
            raise StoreIOError("Not a PKCS#12 keystore")
        except StoreIOError as e:
            description = FailureDescription.create(CaError.IO_FAILURE, "Unable to open", e)
        trace = description.full_stack_trace()
        assert trace.startswith("Unable to open\n")
        assert "StoreIOError: Not a PKCS#12 keystore" in trace
