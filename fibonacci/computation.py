"""
Instrumented Fibonacci computation.

Every invocation produces one span, one counter increment and one log line.
The span is made current for the duration of the computation so that nested
telemetry attaches to it, and it is ended exactly once on every exit path.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, cast

from opentelemetry import context as otel_context
from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode

from fibonacci.errors import InvalidInputError
from telemetry.manager import OtelManager

logger = logging.getLogger(__name__)

# Semantic conventions for Fibonacci telemetry
ATTR_N = "fibonacci.n"
ATTR_RESULT = "fibonacci.result"
ATTR_VALID_N = "fibonacci.valid.n"

SPAN_NAME = "fibonacci"
COUNTER_NAME = "fibonacci.invocations"
COUNTER_DESCRIPTION = "Measures the number of times the fibonacci method is invoked."

# Instrumentation scope name for tracer and meter
INSTRUMENTATION_NAME = "fibonacci.computation"

# F(90) is the largest value that fits a signed 64-bit integer with these seeds
MIN_N = 1
MAX_N = 90
INVALID_N_MESSAGE = f"n must be {MIN_N} <= n <= {MAX_N}."


def fibonacci(n: int) -> int:
    """Compute the n-th Fibonacci number, seeded with fib(1) = fib(2) = 1.

    Runs in O(n) time and O(1) space. No range check is performed.
    """
    result = 1
    if n > 2:
        a, b = 0, 1
        for _ in range(1, n):
            result = a + b
            a, b = b, result
    return result


@dataclass(frozen=True)
class ComputationResult:
    """Result of a successful computation."""

    n: int
    result: int

    def to_dict(self) -> Dict[str, Any]:
        return {"n": self.n, "result": self.result}


@dataclass(frozen=True)
class ComputationOutcome:
    """Either a ComputationResult or the InvalidInputError that prevented it."""

    n: int
    result: Optional[ComputationResult] = None
    error: Optional[InvalidInputError] = None

    def __post_init__(self):
        if (self.result is None) == (self.error is None):
            raise ValueError("ComputationOutcome needs exactly one of result or error")

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> ComputationResult:
        """Return the result, raising the stored error for a failed outcome."""
        if self.error is not None:
            raise self.error
        return cast(ComputationResult, self.result)


class InstrumentedFibonacci:
    """Fibonacci computation wrapped in tracing, metrics and logging.

    Build one instance at startup and share it: the tracer and the invocation
    counter are created here once and only ever read or incremented afterwards.

    Example:
        computation = InstrumentedFibonacci(OtelManager("fibonacci-service"))
        outcome = computation.evaluate(10)
        if outcome.ok:
            print(outcome.result.result)
    """

    def __init__(self, telemetry: OtelManager):
        """Initialize tracer and invocation counter.

        Args:
            telemetry: Telemetry provider supplying tracer and meter
        """
        self._tracer = telemetry.get_tracer(INSTRUMENTATION_NAME)
        meter = telemetry.get_meter(INSTRUMENTATION_NAME)
        self._invocations = meter.create_counter(
            COUNTER_NAME, description=COUNTER_DESCRIPTION, unit="1"
        )

    def evaluate(self, n: int) -> ComputationOutcome:
        """Compute fibonacci(n) inside its own span.

        Out-of-range input is reported in the returned outcome, never raised.
        Unexpected exceptions (e.g. from telemetry calls) are recorded on the
        span and propagate once the span has been ended.

        Args:
            n: must be >= 1 and <= 90
        """
        span = self._tracer.start_span(SPAN_NAME, attributes={ATTR_N: n})
        token = otel_context.attach(trace.set_span_in_context(span))
        try:
            if n < MIN_N or n > MAX_N:
                error = InvalidInputError(INVALID_N_MESSAGE)
                span.set_status(Status(StatusCode.ERROR, error.message))
                self._invocations.add(1, {ATTR_VALID_N: False})
                logger.info(f"Failed to compute fibonacci({n})")
                return ComputationOutcome(n=n, error=error)

            result = fibonacci(n)
            span.set_attribute(ATTR_RESULT, result)
            self._invocations.add(1, {ATTR_VALID_N: True})
            logger.info(f"Compute fibonacci({n}) = {result}")
            return ComputationOutcome(n=n, result=ComputationResult(n=n, result=result))
        except Exception as e:
            span.set_status(Status(StatusCode.ERROR, str(e)))
            span.record_exception(e)
            raise
        finally:
            span.end()
            otel_context.detach(token)

    def compute(self, n: int) -> ComputationResult:
        """Compute fibonacci(n), raising InvalidInputError when n is out of range."""
        return self.evaluate(n).unwrap()
