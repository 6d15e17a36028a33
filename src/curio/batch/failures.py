"""Classification of entry-generation failures.

Each failure gets a kind that decides whether another attempt can help:

    kind        retried   final severity
    timeout     yes       high
    network     yes       high
    api         yes       critical
    database    yes       critical
    validation  no        high
    unknown     no        high

Exception types are checked first. Plain exceptions from third-party
generator clients fall back to message keywords.
"""

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy.exc import SQLAlchemyError

from curio.core.errors import CollaboratorError

KIND_TIMEOUT = "timeout"
KIND_NETWORK = "network"
KIND_API = "api"
KIND_DATABASE = "database"
KIND_VALIDATION = "validation"
KIND_UNKNOWN = "unknown"

RETRYABLE_KINDS = frozenset({KIND_TIMEOUT, KIND_NETWORK, KIND_API, KIND_DATABASE})

# Checked in order against the lower-cased message
_MESSAGE_KEYWORDS: tuple[tuple[str, tuple[str, ...]], ...] = (
    (KIND_TIMEOUT, ("timeout", "timed out")),
    (KIND_NETWORK, ("network", "connection", "econnrefused", "enotfound")),
    (KIND_API, ("rate limit", "429", "api error", "status code 5")),
    (KIND_DATABASE, ("database", "sqlite")),
    (KIND_VALIDATION, ("validation", "invalid", "required")),
)


@dataclass(frozen=True)
class FailureClass:
    """Kind of a generation failure and what it implies."""

    kind: str

    @property
    def retryable(self) -> bool:
        return self.kind in RETRYABLE_KINDS

    @property
    def severity(self) -> str:
        """Severity once attempts are exhausted."""
        if self.kind in (KIND_API, KIND_DATABASE):
            return "critical"
        return "high"


def classify_failure(exc: BaseException) -> FailureClass:
    """Map an exception raised by a generation attempt to its kind."""
    # TimeoutError first: it subclasses OSError, CollaboratorTimeout subclasses both
    if isinstance(exc, TimeoutError):
        return FailureClass(KIND_TIMEOUT)
    if isinstance(exc, OSError):
        return FailureClass(KIND_NETWORK)
    if isinstance(exc, CollaboratorError):
        return FailureClass(KIND_API)
    if isinstance(exc, SQLAlchemyError):
        return FailureClass(KIND_DATABASE)
    if isinstance(exc, (ValueError, TypeError, KeyError)):
        return FailureClass(KIND_VALIDATION)

    message = str(exc).lower()
    for kind, keywords in _MESSAGE_KEYWORDS:
        if any(keyword in message for keyword in keywords):
            return FailureClass(kind)
    return FailureClass(KIND_UNKNOWN)


def is_retryable(exc: BaseException) -> bool:
    return classify_failure(exc).retryable
