"""
Error taxonomy for the classification pipeline.

Failures are translated into a closed set of kinds at the service boundary
(AI service adapter, ticket store). Retryability is a property of the kind.
"""

from enum import Enum
from typing import Optional


class ServiceErrorKind(str, Enum):
    """Why a call across a service boundary failed."""

    CONNECTION_RESET = "connection_reset"
    TIMEOUT = "timeout"
    CONNECTION_REFUSED = "connection_refused"
    RATE_LIMITED = "rate_limited"
    MALFORMED_RESPONSE = "malformed_response"
    AUTHENTICATION = "authentication"
    CONFIGURATION = "configuration"
    UNKNOWN = "unknown"

    @property
    def retryable(self) -> bool:
        return self in TRANSIENT_KINDS

    @property
    def permanent(self) -> bool:
        return self in PERMANENT_KINDS


TRANSIENT_KINDS = frozenset(
    {
        ServiceErrorKind.CONNECTION_RESET,
        ServiceErrorKind.TIMEOUT,
        ServiceErrorKind.CONNECTION_REFUSED,
        ServiceErrorKind.RATE_LIMITED,
    }
)
PERMANENT_KINDS = frozenset({ServiceErrorKind.AUTHENTICATION, ServiceErrorKind.CONFIGURATION})


class ServiceError(Exception):
    """A failure at a service boundary, tagged with its kind."""

    def __init__(self, kind: ServiceErrorKind, message: str = ""):
        super().__init__(message or kind.value)
        self.kind = kind

    @property
    def retryable(self) -> bool:
        return self.kind.retryable


class TransientServiceError(ServiceError):
    """Network reset/timeout/refused or rate limiting. Safe to retry."""


class MalformedResponseError(ServiceError):
    """Service answered, but the payload could not be used."""

    def __init__(self, message: str = ""):
        super().__init__(ServiceErrorKind.MALFORMED_RESPONSE, message)


class PermanentServiceError(ServiceError):
    """Authentication or configuration failure; will recur for every job."""


class RuleConditionError(Exception):
    """
    A routing rule's condition set uses an unsupported operator or operand.
    Not a ValueError: pydantic would wrap that into a ValidationError when
    raised during model construction.
    """


def service_error_for(kind: ServiceErrorKind, message: str = "") -> ServiceError:
    """Build the ServiceError subclass matching `kind`."""
    if kind == ServiceErrorKind.MALFORMED_RESPONSE:
        return MalformedResponseError(message)
    if kind.retryable:
        return TransientServiceError(kind, message)
    if kind.permanent:
        return PermanentServiceError(kind, message)
    return ServiceError(kind, message)


def error_kind(exc: BaseException) -> Optional[ServiceErrorKind]:
    """Kind of a ServiceError, or None for anything untyped."""
    if isinstance(exc, ServiceError):
        return exc.kind
    return None


class TicketNotFoundError(LookupError):
    """The ticket store has no record for a job's ticket id."""
