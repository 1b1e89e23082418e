"""Error taxonomy and typed operation results for the member portal core."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, Optional, TypeVar

T = TypeVar("T")


class PortalError(Exception):
    """Base class for every failure surfaced by the portal core."""

    code = "portal_error"

    def __init__(self, message: str = "", *, cause: Optional[BaseException] = None) -> None:
        super().__init__(message or self.code)
        self.message = message or self.code
        self.cause = cause


# Authentication
class InvalidCredentials(PortalError):
    code = "invalid_credentials"


class SessionExpired(PortalError):
    code = "session_expired"


# Lookup / consistency
class AccountLookupFailed(PortalError):
    """An identity authenticated but no Account row could be resolved for it."""

    code = "account_lookup_failed"


class NoActiveAccount(PortalError):
    code = "no_active_account"


# Directory
class ProfileValidationError(PortalError):
    code = "profile_validation_error"

    def __init__(self, message: str = "", *, fields: Optional[list[str]] = None) -> None:
        super().__init__(message)
        self.fields = list(fields or [])


class ProfileNotFound(PortalError):
    code = "profile_not_found"


class PersistenceError(PortalError):
    code = "persistence_error"


# Personalization
class PersonalizationError(PortalError):
    code = "personalization_error"


class StaleRequest(PortalError):
    """The request was issued for an Account or Profile that is no longer current."""

    code = "stale_request"


def as_portal_error(exc: BaseException, default: type[PortalError] = PersistenceError) -> PortalError:
    """Wrap a collaborator failure so it can travel inside an ``OperationResult``."""
    if isinstance(exc, PortalError):
        return exc
    return default(str(exc) or type(exc).__name__, cause=exc)


@dataclass(frozen=True)
class OperationResult(Generic[T]):
    value: Optional[T] = None
    error: Optional[PortalError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: Optional[T] = None) -> "OperationResult[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, error: PortalError) -> "OperationResult[T]":
        return cls(error=error)


__all__ = [
    "AccountLookupFailed",
    "InvalidCredentials",
    "NoActiveAccount",
    "OperationResult",
    "PersistenceError",
    "PersonalizationError",
    "PortalError",
    "ProfileNotFound",
    "ProfileValidationError",
    "SessionExpired",
    "StaleRequest",
    "as_portal_error",
]
