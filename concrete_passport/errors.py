"""
Registry error types.

Every core operation fails with exactly one RegistryError subclass and
performs no mutation when it does. The ``kind`` attribute lets callers
branch on the failure programmatically instead of parsing messages.
"""

from enum import Enum
from typing import Any, Dict


class ErrorKind(str, Enum):
    """Failure kinds surfaced by the registry."""
    NOT_FOUND = "NotFound"
    DUPLICATE_KEY = "DuplicateKey"
    ALREADY_REGISTERED = "AlreadyRegistered"
    ALREADY_SET = "AlreadySet"
    FORBIDDEN = "Forbidden"
    UNAUTHORIZED = "Unauthorized"
    LOCKED = "Locked"
    INACTIVE = "Inactive"
    ALREADY_INACTIVE = "AlreadyInactive"
    INVALID_ARGUMENT = "InvalidArgument"
    CONSENSUS_NOT_REACHED = "ConsensusNotReached"


class RegistryError(Exception):
    """Base class for every failure raised by the registry."""

    kind: ErrorKind = ErrorKind.INVALID_ARGUMENT

    def __init__(self, message: str, **details: Any):
        self.message = message
        self.details: Dict[str, Any] = details
        super().__init__(f"{self.kind.value}: {message}")

    def to_dict(self) -> Dict[str, Any]:
        d = {"error": self.kind.value, "detail": self.message}
        if self.details:
            d["context"] = self.details
        return d


class NotFoundError(RegistryError):
    kind = ErrorKind.NOT_FOUND


class DuplicateKeyError(RegistryError):
    kind = ErrorKind.DUPLICATE_KEY


class AlreadyRegisteredError(RegistryError):
    kind = ErrorKind.ALREADY_REGISTERED


class AlreadySetError(RegistryError):
    kind = ErrorKind.ALREADY_SET


class ForbiddenError(RegistryError):
    kind = ErrorKind.FORBIDDEN


class UnauthorizedError(RegistryError):
    kind = ErrorKind.UNAUTHORIZED


class LockedError(RegistryError):
    kind = ErrorKind.LOCKED


class InactiveError(RegistryError):
    kind = ErrorKind.INACTIVE


class AlreadyInactiveError(RegistryError):
    kind = ErrorKind.ALREADY_INACTIVE


class InvalidArgumentError(RegistryError):
    kind = ErrorKind.INVALID_ARGUMENT


class ConsensusNotReachedError(RegistryError):
    kind = ErrorKind.CONSENSUS_NOT_REACHED


def require_text(value: Any, field_name: str) -> str:
    """Reject empty or non-string arguments with InvalidArgumentError."""
    if not isinstance(value, str) or not value.strip():
        raise InvalidArgumentError(f"{field_name} must not be empty", field=field_name)
    return value
