"""
Typed exceptions for sandctl.

Provides structured error handling with:
- SandctlError: Base exception for all sandctl errors
- ErrorKind: Closed set of error categories callers can branch on
- Store errors: NotFoundError, DuplicateIDError, ValidationError, StoreIOError
- Lifecycle errors: InvalidTransitionError, LegacySessionError,
  ProvisioningError, ReadinessTimeoutError, OperationCancelledError
- Provider errors: ProviderError and its subclasses

Callers should branch with is_error_kind() rather than isinstance() checks,
since wrapped errors (e.g. a ProvisioningError caused by a readiness timeout)
answer to every kind along their cause chain.
"""

from __future__ import annotations

from datetime import timedelta
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, Optional

if TYPE_CHECKING:
    from sandctl.models import Session


class ErrorKind(str, Enum):
    """Low-cardinality error classification."""

    NOT_FOUND = "not_found"
    DUPLICATE_ID = "duplicate_id"
    VALIDATION = "validation"
    PROVISIONING = "provisioning"
    READINESS_TIMEOUT = "readiness_timeout"
    STORE_IO = "store_io"
    POOL_EXHAUSTED = "pool_exhausted"
    INVALID_TRANSITION = "invalid_transition"
    LEGACY_SESSION = "legacy_session"
    CANCELLED = "cancelled"
    CONFIRMATION_REQUIRED = "confirmation_required"
    CONFIG = "config"
    PROVIDER = "provider"
    REMOTE_NOT_FOUND = "remote_not_found"
    PROVIDER_AUTH = "provider_auth"
    QUOTA_EXCEEDED = "quota_exceeded"
    PROVISION_FAILED = "provision_failed"
    REMOTE_DELETE = "remote_delete"
    INTERNAL = "internal"


class SandctlError(Exception):
    """Base exception for all sandctl errors.

    Attributes:
        message: Human-readable error description
        code: Machine-readable error code for programmatic handling
        details: Additional context as key-value pairs
        kind: ErrorKind category of this error class
    """

    kind: ErrorKind = ErrorKind.INTERNAL

    def __init__(
        self,
        message: str,
        *,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.message = message
        self.code = code or self.kind.value
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize exception for logging or API responses."""
        return {
            "error": self.code,
            "kind": self.kind.value,
            "message": self.message,
            "details": self.details,
        }


def _kinds_of(exc: SandctlError) -> set[ErrorKind]:
    # The base class default (INTERNAL) only applies when nothing overrides it.
    kinds = {exc.kind}
    for cls in type(exc).__mro__:
        if cls is not SandctlError and "kind" in vars(cls):
            kinds.add(cls.kind)
    return kinds


def is_error_kind(exc: Optional[BaseException], kind: ErrorKind) -> bool:
    """
    Check whether an exception, or anything in its cause chain, is of a kind.

    Follows __cause__ (explicit ``raise ... from``) links, so a
    ProvisioningError raised from a ReadinessTimeoutError matches both
    PROVISIONING and READINESS_TIMEOUT. Kinds of parent error classes match
    too: a RemoteDeleteError is also a PROVIDER error.
    """
    seen: set[int] = set()
    while exc is not None and id(exc) not in seen:
        seen.add(id(exc))
        if isinstance(exc, SandctlError) and kind in _kinds_of(exc):
            return True
        exc = exc.__cause__
    return False


# =============================================================================
# Session store errors
# =============================================================================


class NotFoundError(SandctlError):
    """Lookup, update, removal or destroy of a session id that does not exist."""

    kind = ErrorKind.NOT_FOUND

    def __init__(self, session_id: str) -> None:
        self.session_id = session_id
        super().__init__(
            f"session '{session_id}' not found", details={"id": session_id}
        )


class DuplicateIDError(SandctlError):
    """A session with the same normalized id already exists."""

    kind = ErrorKind.DUPLICATE_ID

    def __init__(self, session_id: str) -> None:
        self.session_id = session_id
        super().__init__(
            f"session with name '{session_id}' already exists",
            details={"id": session_id},
        )


class ValidationError(SandctlError):
    """A record being persisted is missing a required field."""

    kind = ErrorKind.VALIDATION

    def __init__(self, message: str, *, field: Optional[str] = None) -> None:
        self.field = field
        super().__init__(message, details={"field": field} if field else None)


class StoreIOError(SandctlError):
    """The sessions file could not be read, decoded or written."""

    kind = ErrorKind.STORE_IO

    def __init__(self, message: str, *, path: Optional[str] = None) -> None:
        self.path = path
        super().__init__(message, details={"path": path} if path else None)


class PoolExhaustedError(SandctlError):
    """Every name in the pool is already in use."""

    kind = ErrorKind.POOL_EXHAUSTED

    def __init__(self, pool_size: int) -> None:
        self.pool_size = pool_size
        super().__init__(
            "no available names. Please destroy unused sandboxes with "
            "'sandctl destroy <name>'",
            details={"pool_size": pool_size},
        )


# =============================================================================
# Lifecycle errors
# =============================================================================


class InvalidTransitionError(SandctlError):
    """A status change that leaves the allowed transition graph."""

    kind = ErrorKind.INVALID_TRANSITION

    def __init__(self, session_id: str, current: str, target: str) -> None:
        self.session_id = session_id
        self.current = current
        self.target = target
        super().__init__(
            f"session '{session_id}' cannot move from {current} to {target}",
            details={"id": session_id, "current": current, "target": target},
        )


class LegacySessionError(SandctlError):
    """A lifecycle operation was attempted on a legacy session record."""

    kind = ErrorKind.LEGACY_SESSION

    def __init__(self, session_id: str) -> None:
        self.session_id = session_id
        super().__init__(
            f"session '{session_id}' is from an old version and incompatible "
            "with current sandctl; it can only be removed locally",
            details={"id": session_id},
        )


class ConfirmationRequiredError(SandctlError):
    """Destroy was requested without confirmation."""

    kind = ErrorKind.CONFIRMATION_REQUIRED

    def __init__(self, session_id: str) -> None:
        self.session_id = session_id
        super().__init__(
            f"destroying session '{session_id}' requires confirmation",
            details={"id": session_id},
        )


class OperationCancelledError(SandctlError):
    """A pending wait was aborted through its cancellation event."""

    kind = ErrorKind.CANCELLED


class ReadinessTimeoutError(SandctlError):
    """The readiness predicate never succeeded before the deadline."""

    kind = ErrorKind.READINESS_TIMEOUT

    def __init__(self, description: str, timeout: float) -> None:
        self.description = description
        self.timeout = timeout
        super().__init__(
            f"{description} did not become ready within {timedelta(seconds=timeout)}",
            details={"timeout_seconds": timeout},
        )


class ProvisioningError(SandctlError):
    """A provisioning step failed.

    Attributes:
        step_label: Label of the step that failed
        cause: The underlying step error
        session: Final (Failed) session record, when known
    """

    kind = ErrorKind.PROVISIONING

    def __init__(
        self,
        step_label: str,
        cause: BaseException,
        *,
        session: Optional["Session"] = None,
    ) -> None:
        self.step_label = step_label
        self.cause = cause
        self.session = session
        details: Dict[str, Any] = {"step": step_label}
        if isinstance(cause, SandctlError):
            details["cause"] = cause.kind.value
        super().__init__(f"{step_label}: {cause}", details=details)


class ConfigError(SandctlError):
    """Configuration is missing or invalid."""

    kind = ErrorKind.CONFIG


# =============================================================================
# Provider errors
# =============================================================================


class ProviderError(SandctlError):
    """Remote provider communication error.

    Attributes:
        provider: Name of the provider that failed
        status_code: HTTP status code if available
    """

    kind = ErrorKind.PROVIDER

    def __init__(
        self,
        message: str,
        *,
        provider: Optional[str] = None,
        status_code: Optional[int] = None,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        details = details or {}
        if provider:
            details["provider"] = provider
        if status_code:
            details["status_code"] = status_code

        self.provider = provider
        self.status_code = status_code

        super().__init__(message, code=code, details=details)


class RemoteNotFoundError(ProviderError):
    """The remote resource does not exist."""

    kind = ErrorKind.REMOTE_NOT_FOUND


class ProviderAuthError(ProviderError):
    """Invalid or expired provider credentials."""

    kind = ErrorKind.PROVIDER_AUTH


class QuotaExceededError(ProviderError):
    """The provider account has reached its resource limit."""

    kind = ErrorKind.QUOTA_EXCEEDED


class ProvisionFailedError(ProviderError):
    """The remote resource could not be created or entered a failed state."""

    kind = ErrorKind.PROVISION_FAILED


class RemoteDeleteError(ProviderError):
    """The remote resource could not be deleted and still exists."""

    kind = ErrorKind.REMOTE_DELETE


__all__ = [
    "ErrorKind",
    "SandctlError",
    "is_error_kind",
    "NotFoundError",
    "DuplicateIDError",
    "ValidationError",
    "StoreIOError",
    "PoolExhaustedError",
    "InvalidTransitionError",
    "LegacySessionError",
    "ConfirmationRequiredError",
    "OperationCancelledError",
    "ReadinessTimeoutError",
    "ProvisioningError",
    "ConfigError",
    "ProviderError",
    "RemoteNotFoundError",
    "ProviderAuthError",
    "QuotaExceededError",
    "ProvisionFailedError",
    "RemoteDeleteError",
]
