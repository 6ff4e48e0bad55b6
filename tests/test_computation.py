"""
Tests for the instrumented Fibonacci computation.

Covers the algorithm, span lifecycle and attributes, the invocation counter,
log lines, and release of the span under fault injection.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from unittest.mock import Mock, patch

import pytest
from opentelemetry import trace
from opentelemetry.trace import StatusCode

from fibonacci.computation import (
    ATTR_N,
    ATTR_RESULT,
    INVALID_N_MESSAGE,
    SPAN_NAME,
    ComputationOutcome,
    ComputationResult,
    fibonacci,
)
from fibonacci.errors import InvalidInputError


def _reference_sequence(limit: int) -> list:
    values = [1, 1]
    while len(values) < limit:
        values.append(values[-1] + values[-2])
    return values


class TestFibonacciAlgorithm:
    """Tests for the pure iterative algorithm."""

    @pytest.mark.parametrize(
        "n, expected",
        [(1, 1), (2, 1), (3, 2), (10, 55), (90, 2880067194370816120)],
    )
    def test_known_values(self, n, expected):
        assert fibonacci(n) == expected

    def test_matches_recurrence_for_whole_range(self):
        """Test every n in [1, 90] against the recurrence seeded at (1, 1)."""
        reference = _reference_sequence(90)
        assert [fibonacci(n) for n in range(1, 91)] == reference

    def test_largest_value_fits_signed_64_bit(self):
        assert fibonacci(90) <= 2**63 - 1


class TestComputationOutcome:
    """Tests for the tagged outcome type."""

    def test_success_unwraps_to_result(self):
        outcome = ComputationOutcome(n=5, result=ComputationResult(n=5, result=5))
        assert outcome.ok is True
        assert outcome.unwrap() == ComputationResult(n=5, result=5)

    def test_failure_unwrap_raises_stored_error(self):
        error = InvalidInputError(INVALID_N_MESSAGE)
        outcome = ComputationOutcome(n=0, error=error)
        assert outcome.ok is False
        with pytest.raises(InvalidInputError) as exc_info:
            outcome.unwrap()
        assert exc_info.value is error

    def test_requires_exactly_one_branch(self):
        with pytest.raises(ValueError):
            ComputationOutcome(n=1)
        with pytest.raises(ValueError):
            ComputationOutcome(
                n=1,
                result=ComputationResult(n=1, result=1),
                error=InvalidInputError(INVALID_N_MESSAGE),
            )

    def test_result_to_dict(self):
        assert ComputationResult(n=10, result=55).to_dict() == {"n": 10, "result": 55}


class TestValidInvocation:
    """Tests for invocations with 1 <= n <= 90."""

    def test_compute_returns_result(self, computation):
        assert computation.compute(10) == ComputationResult(n=10, result=55)

    def test_span_carries_input_and_result(self, computation, span_exporter):
        computation.compute(10)

        spans = span_exporter.get_finished_spans()
        assert len(spans) == 1
        span = spans[0]
        assert span.name == SPAN_NAME
        assert span.attributes[ATTR_N] == 10
        assert span.attributes[ATTR_RESULT] == 55
        assert span.status.status_code == StatusCode.UNSET

    def test_counter_incremented_as_valid(self, computation, invocation_counts):
        computation.compute(1)
        assert invocation_counts() == {True: 1}

    def test_logs_computed_value(self, computation, caplog):
        with caplog.at_level(logging.INFO, logger="fibonacci.computation"):
            computation.compute(10)
        assert "Compute fibonacci(10) = 55" in caplog.text

    def test_span_is_current_during_computation(self, computation, span_exporter):
        """Test nested code sees the fibonacci span as the active one."""
        seen = []

        def spy(n):
            seen.append(trace.get_current_span())
            return fibonacci(n)

        with patch("fibonacci.computation.fibonacci", side_effect=spy):
            computation.compute(5)

        finished = span_exporter.get_finished_spans()[0]
        assert seen[0].get_span_context().span_id == finished.context.span_id

    def test_active_span_restored_after_return(self, computation):
        computation.compute(5)
        assert not trace.get_current_span().get_span_context().is_valid

    def test_repeated_calls_are_identical(self, computation, span_exporter, invocation_counts):
        first = computation.compute(42)
        second = computation.compute(42)

        assert first == second
        assert len(span_exporter.get_finished_spans()) == 2
        assert invocation_counts() == {True: 2}


class TestInvalidInvocation:
    """Tests for invocations with n outside [1, 90]."""

    @pytest.mark.parametrize("n", [0, -1, 91, 10**6])
    def test_compute_raises_invalid_input(self, computation, n):
        with pytest.raises(InvalidInputError) as exc_info:
            computation.compute(n)
        assert exc_info.value.message == "n must be 1 <= n <= 90."

    def test_evaluate_returns_failed_outcome(self, computation):
        outcome = computation.evaluate(0)
        assert outcome.ok is False
        assert outcome.result is None
        assert isinstance(outcome.error, InvalidInputError)

    def test_span_marked_failed_without_result(self, computation, span_exporter):
        computation.evaluate(91)

        spans = span_exporter.get_finished_spans()
        assert len(spans) == 1
        span = spans[0]
        assert span.attributes[ATTR_N] == 91
        assert ATTR_RESULT not in span.attributes
        assert span.status.status_code == StatusCode.ERROR
        assert span.status.description == INVALID_N_MESSAGE

    def test_counter_incremented_as_invalid(self, computation, invocation_counts):
        computation.evaluate(0)
        assert invocation_counts() == {False: 1}

    def test_logs_failure(self, computation, caplog):
        with caplog.at_level(logging.INFO, logger="fibonacci.computation"):
            computation.evaluate(-3)
        assert "Failed to compute fibonacci(-3)" in caplog.text

    def test_active_span_restored_after_failure(self, computation):
        with pytest.raises(InvalidInputError):
            computation.compute(0)
        assert not trace.get_current_span().get_span_context().is_valid


class TestSpanReleaseUnderFaults:
    """Tests that the span is ended exactly once when something unexpected fails."""

    def test_failing_counter_still_ends_span(self, computation, span_exporter):
        computation._invocations = Mock()
        computation._invocations.add.side_effect = RuntimeError("exporter down")

        with pytest.raises(RuntimeError, match="exporter down"):
            computation.evaluate(10)

        spans = span_exporter.get_finished_spans()
        assert len(spans) == 1
        assert spans[0].status.status_code == StatusCode.ERROR
        assert spans[0].status.description == "exporter down"
        assert not trace.get_current_span().get_span_context().is_valid

    def test_failing_loop_still_ends_span(self, computation, span_exporter, invocation_counts):
        with patch("fibonacci.computation.fibonacci", side_effect=OverflowError("overflow")):
            with pytest.raises(OverflowError):
                computation.evaluate(10)

        spans = span_exporter.get_finished_spans()
        assert len(spans) == 1
        assert ATTR_RESULT not in spans[0].attributes
        assert spans[0].events[0].name == "exception"
        assert invocation_counts() == {}

    def test_span_end_called_once(self, telemetry):
        """Test end() is called exactly once on success and failure paths."""
        from fibonacci.computation import InstrumentedFibonacci

        span = Mock()
        tracer = Mock()
        tracer.start_span.return_value = span
        with patch.object(telemetry, "get_tracer", return_value=tracer):
            computation = InstrumentedFibonacci(telemetry)

        computation.evaluate(3)
        computation.evaluate(0)
        assert span.end.call_count == 2


class TestConcurrentInvocations:
    """Tests for invocations running on several worker threads."""

    def test_parallel_invocations_are_isolated(self, computation, span_exporter, invocation_counts):
        inputs = list(range(-4, 95)) * 3

        with ThreadPoolExecutor(max_workers=8) as pool:
            outcomes = list(pool.map(computation.evaluate, inputs))

        reference = _reference_sequence(90)
        for n, outcome in zip(inputs, outcomes):
            if 1 <= n <= 90:
                assert outcome.unwrap().result == reference[n - 1]
            else:
                assert outcome.ok is False

        valid = sum(1 for n in inputs if 1 <= n <= 90)
        assert len(span_exporter.get_finished_spans()) == len(inputs)
        assert invocation_counts() == {True: valid, False: len(inputs) - valid}
