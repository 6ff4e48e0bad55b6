"""
Request handling for the /fibonacci route, independent of the web framework.
"""

import logging
import re
from typing import Any, Dict, Mapping, Optional, Tuple

from fibonacci.computation import InstrumentedFibonacci
from fibonacci.errors import (
    ErrorTranslator,
    MissingOrMalformedParameterError,
    RequestError,
    UnsupportedMethodError,
)

logger = logging.getLogger(__name__)

HTTP_OK = 200
PARAM_N = "n"
ALLOWED_METHODS = ("GET", "HEAD")

# Query values are parsed as signed 64-bit integers
_INT64_MIN = -(2**63)
_INT64_MAX = 2**63 - 1

# Plain ASCII decimal, no digit separators
_INTEGER_PATTERN = re.compile(r"[+-]?[0-9]+")


def parse_n(query_params: Mapping[str, str]) -> int:
    """Extract the required integer parameter n from the query string."""
    raw = query_params.get(PARAM_N)
    if raw is None:
        raise MissingOrMalformedParameterError(
            f"Required request parameter '{PARAM_N}' is not present"
        )
    text = raw.strip()
    if not _INTEGER_PATTERN.fullmatch(text):
        raise MissingOrMalformedParameterError(
            f"Request parameter '{PARAM_N}' must be an integer, got '{raw}'"
        )
    value = int(text)
    if value < _INT64_MIN or value > _INT64_MAX:
        raise MissingOrMalformedParameterError(
            f"Request parameter '{PARAM_N}' must be a 64-bit integer, got '{raw}'"
        )
    return value


class FibonacciHandler:
    """Maps query parameters to the instrumented computation and back to a response."""

    def __init__(
        self,
        computation: InstrumentedFibonacci,
        translator: Optional[ErrorTranslator] = None,
    ):
        self.computation = computation
        self.translator = translator or ErrorTranslator()

    def handle(
        self, query_params: Mapping[str, str], method: str = "GET"
    ) -> Tuple[Dict[str, Any], int]:
        """Handle one request.

        Args:
            query_params: Query string parameters of the request
            method: HTTP method of the request

        Returns:
            Tuple of (response body, HTTP status code)
        """
        try:
            if method.upper() not in ALLOWED_METHODS:
                raise UnsupportedMethodError(f"Request method '{method.upper()}' is not supported")

            outcome = self.computation.evaluate(parse_n(query_params))
        except RequestError as e:
            logger.debug(f"Rejected fibonacci request: {e.message}")
            return self.translator.translate(e)

        if not outcome.ok:
            return self.translator.translate(outcome.error)
        return outcome.unwrap().to_dict(), HTTP_OK
