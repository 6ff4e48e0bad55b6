"""
Request failure taxonomy and its translation into HTTP responses.

Only the kinds in FailureKind get the structured 400 response; everything else
is left to the framework's default fault handling.
"""

import logging
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Dict, Tuple

from telemetry.manager import mark_current_span_failed

logger = logging.getLogger(__name__)

HTTP_BAD_REQUEST = 400


class FailureKind(str, Enum):
    """Closed set of failures the service answers with a structured error."""

    INVALID_INPUT = "invalid_input"
    MISSING_OR_MALFORMED_PARAMETER = "missing_or_malformed_parameter"
    UNSUPPORTED_METHOD = "unsupported_method"


class RequestError(Exception):
    """Base class for request failures carrying a client-facing message."""

    kind: FailureKind

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidInputError(RequestError):
    """n is outside the supported range."""

    kind = FailureKind.INVALID_INPUT


class MissingOrMalformedParameterError(RequestError):
    """A required query parameter is absent or not an integer."""

    kind = FailureKind.MISSING_OR_MALFORMED_PARAMETER


class UnsupportedMethodError(RequestError):
    """The HTTP method is not allowed on the route."""

    kind = FailureKind.UNSUPPORTED_METHOD


@dataclass(frozen=True)
class ErrorPayload:
    """Body returned to the caller for a translated failure."""

    message: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class ErrorTranslator:
    """Maps recognised failure kinds to (body, status) responses.

    Before answering, the active span (if any) is marked as failed with the
    error message. Exceptions outside the recognised kinds are re-raised.
    """

    STATUS_BY_KIND: Dict[FailureKind, int] = {
        FailureKind.INVALID_INPUT: HTTP_BAD_REQUEST,
        FailureKind.MISSING_OR_MALFORMED_PARAMETER: HTTP_BAD_REQUEST,
        FailureKind.UNSUPPORTED_METHOD: HTTP_BAD_REQUEST,
    }

    def translate(self, error: Exception) -> Tuple[Dict[str, Any], int]:
        """Translate a recognised failure into a response body and status code.

        Args:
            error: The failure raised while handling the request

        Returns:
            Tuple of ({"message": ...}, status code)

        Raises:
            The given error itself when its kind is not recognised
        """
        kind = getattr(error, "kind", None)
        status = self.STATUS_BY_KIND.get(kind) if isinstance(error, RequestError) else None
        if status is None:
            raise error

        mark_current_span_failed(error.message)
        logger.debug(f"Translated {kind.value} failure to {status}: {error.message}")
        return ErrorPayload(message=error.message).to_dict(), status
