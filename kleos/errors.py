"""
KLEOS - Domain errors.

Every failure path in the services raises one of these. Each carries a kind
that the HTTP layer maps to a status code.
"""

from enum import Enum
from typing import Any, Dict


class ErrorKind(str, Enum):
    INVALID_INPUT = "InvalidInput"
    INVALID_STATE = "InvalidState"
    UNAUTHORIZED = "Unauthorized"
    TOO_EARLY = "TooEarly"
    NOT_FOUND = "NotFound"
    UPSTREAM_UNAVAILABLE = "UpstreamUnavailable"


class KleosError(RuntimeError):
    kind: ErrorKind = ErrorKind.INVALID_INPUT
    retryable: bool = False

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.kind.value, "detail": self.message}


class InvalidInput(KleosError):
    kind = ErrorKind.INVALID_INPUT


class InvalidState(KleosError):
    kind = ErrorKind.INVALID_STATE


class Unauthorized(KleosError):
    kind = ErrorKind.UNAUTHORIZED


class TooEarly(KleosError):
    kind = ErrorKind.TOO_EARLY


class NotFound(KleosError):
    kind = ErrorKind.NOT_FOUND


class UpstreamUnavailable(KleosError):
    kind = ErrorKind.UPSTREAM_UNAVAILABLE
    retryable = True
