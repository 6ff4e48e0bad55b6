"""
Instrumented Fibonacci service.

Computes bounded Fibonacci numbers behind GET /fibonacci and reports every
invocation as a span, a counter increment and a log line.
"""

from fibonacci.computation import (
    ComputationOutcome,
    ComputationResult,
    InstrumentedFibonacci,
    fibonacci,
)
from fibonacci.errors import (
    ErrorTranslator,
    FailureKind,
    InvalidInputError,
    MissingOrMalformedParameterError,
    RequestError,
    UnsupportedMethodError,
)
from fibonacci.handler import FibonacciHandler

__all__ = [
    # Computation
    "fibonacci",
    "ComputationResult",
    "ComputationOutcome",
    "InstrumentedFibonacci",
    # Errors
    "FailureKind",
    "RequestError",
    "InvalidInputError",
    "MissingOrMalformedParameterError",
    "UnsupportedMethodError",
    "ErrorTranslator",
    # Request handling
    "FibonacciHandler",
]
