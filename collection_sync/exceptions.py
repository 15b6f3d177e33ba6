"""
Custom exceptions used by the collection synchronization layer.

Keeping library-specific errors in one module gives callers a predictable
import surface for catching and handling operational edge cases.

Repository failures are normalized into :class:`CollectionError` at the
service and mutation boundaries, so UI-facing code only ever sees one error
type carrying:

* a machine-readable :class:`ErrorCode` and its broader ``kind``
* a :class:`ErrorSeverity`
* a ``recoverable`` flag telling callers whether a retry makes sense
* the wrapped original exception for diagnostics
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any


class CollectionSyncError(Exception):
    """Base error type for all library-level exceptions."""


class ErrorCode(str, Enum):
    """
    Error codes surfaced by :class:`CollectionError`.

    The first eight values are error kinds. The ``*_FAILED`` values tag the
    operation that failed and all share the ``OPERATION_FAILED`` kind.
    """

    NOT_FOUND = "NOT_FOUND"
    PERMISSION_DENIED = "PERMISSION_DENIED"
    NETWORK_ERROR = "NETWORK_ERROR"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    TIMEOUT = "TIMEOUT"
    CONFLICT = "CONFLICT"
    OPERATION_FAILED = "OPERATION_FAILED"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"

    FETCH_FAILED = "FETCH_FAILED"
    CREATE_FAILED = "CREATE_FAILED"
    UPDATE_FAILED = "UPDATE_FAILED"
    DELETE_FAILED = "DELETE_FAILED"
    EXPORT_FAILED = "EXPORT_FAILED"
    IMPORT_FAILED = "IMPORT_FAILED"

    @property
    def kind(self) -> "ErrorCode":
        """Return the error kind this code belongs to."""
        if self in _OPERATION_CODES:
            return ErrorCode.OPERATION_FAILED
        return self


_OPERATION_CODES = frozenset(
    {
        ErrorCode.FETCH_FAILED,
        ErrorCode.CREATE_FAILED,
        ErrorCode.UPDATE_FAILED,
        ErrorCode.DELETE_FAILED,
        ErrorCode.EXPORT_FAILED,
        ErrorCode.IMPORT_FAILED,
    }
)


class ErrorSeverity(str, Enum):
    """Severity attached to every :class:`CollectionError`."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


_DEFAULT_SEVERITY = {
    ErrorCode.NOT_FOUND: ErrorSeverity.LOW,
    ErrorCode.PERMISSION_DENIED: ErrorSeverity.HIGH,
    ErrorCode.VALIDATION_ERROR: ErrorSeverity.LOW,
}

_NON_RECOVERABLE = frozenset({ErrorCode.NOT_FOUND, ErrorCode.PERMISSION_DENIED})

_USER_MESSAGES = {
    ErrorCode.NOT_FOUND: "The requested item could not be found.",
    ErrorCode.PERMISSION_DENIED: "You do not have permission to perform this action.",
    ErrorCode.NETWORK_ERROR: "A network error occurred. Please check your connection and try again.",
    ErrorCode.TIMEOUT: "The operation took too long. Please try again.",
    ErrorCode.CONFLICT: "This operation conflicts with existing data.",
    ErrorCode.OPERATION_FAILED: "The operation failed. Please try again.",
}


class CollectionError(CollectionSyncError):
    """
    Normalized error raised across the service/mutation boundary.

    Parameters
    ----------
    message:
        Technical message used for logs and diagnostics.
    code:
        Error code. Plain strings are accepted and converted.
    severity:
        Optional severity override. Defaults depend on the error kind.
    recoverable:
        Optional override of the kind's default recoverability.
    original:
        Wrapped exception that caused this error, if any.
    context:
        Free-form diagnostic fields (resource name, record id, ...).
    """

    def __init__(
        self,
        message: str,
        code: ErrorCode | str = ErrorCode.UNKNOWN_ERROR,
        *,
        severity: ErrorSeverity | str | None = None,
        recoverable: bool | None = None,
        original: BaseException | None = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = ErrorCode(code)
        kind = self.code.kind
        self.severity = (
            ErrorSeverity(severity)
            if severity is not None
            else _DEFAULT_SEVERITY.get(kind, ErrorSeverity.MEDIUM)
        )
        self.recoverable = (
            bool(recoverable) if recoverable is not None else kind not in _NON_RECOVERABLE
        )
        self.original = original
        self.context = dict(context or {})
        self.timestamp = datetime.now(timezone.utc)

    @property
    def kind(self) -> ErrorCode:
        """Return the broad error kind (one of the eight taxonomy values)."""
        return self.code.kind

    def user_message(self) -> str:
        """
        Return a human-readable message suitable for end users.

        Validation errors surface their own message because it is already
        actionable by the user.
        """
        if self.kind is ErrorCode.VALIDATION_ERROR:
            return self.message
        return _USER_MESSAGES.get(
            self.kind, "An unexpected error occurred. Please try again."
        )

    def as_dict(self) -> dict[str, Any]:
        """Return a JSON-friendly dictionary for logging."""
        payload: dict[str, Any] = {
            "code": self.code.value,
            "kind": self.kind.value,
            "message": self.message,
            "severity": self.severity.value,
            "recoverable": self.recoverable,
            "timestamp": self.timestamp.isoformat(),
            "context": dict(self.context),
        }
        if self.original is not None:
            payload["original"] = {
                "type": type(self.original).__name__,
                "message": str(self.original),
            }
        return payload

    def __repr__(self) -> str:
        return f"CollectionError(code={self.code.value!r}, message={self.message!r})"


def not_found(resource: str, record_id: str | None = None) -> CollectionError:
    """Build a ``NOT_FOUND`` error for a resource and optional record id."""
    if record_id is not None:
        message = f'{resource} with ID "{record_id}" not found'
    else:
        message = f"{resource} not found"
    return CollectionError(
        message,
        ErrorCode.NOT_FOUND,
        context={"resource": resource, "id": record_id},
    )


def permission_denied(action: str, resource: str) -> CollectionError:
    """Build a ``PERMISSION_DENIED`` error."""
    return CollectionError(
        f"Permission denied: Cannot {action} {resource}",
        ErrorCode.PERMISSION_DENIED,
        context={"action": action, "resource": resource},
    )


def network_error(original: BaseException | None = None) -> CollectionError:
    """Build a ``NETWORK_ERROR`` error wrapping a transport failure."""
    return CollectionError("Network request failed", ErrorCode.NETWORK_ERROR, original=original)


def validation_error(field: str, reason: str) -> CollectionError:
    """Build a ``VALIDATION_ERROR`` whose message is shown to users verbatim."""
    return CollectionError(
        f"Validation failed for {field}: {reason}",
        ErrorCode.VALIDATION_ERROR,
        context={"field": field, "reason": reason},
    )


def operation_failed(operation: str, original: BaseException | None = None) -> CollectionError:
    """Build an ``OPERATION_FAILED`` error for a named operation."""
    return CollectionError(
        f'Operation "{operation}" failed',
        ErrorCode.OPERATION_FAILED,
        original=original,
        context={"operation": operation},
    )


def timeout(operation: str, timeout_seconds: float) -> CollectionError:
    """Build a ``TIMEOUT`` error."""
    return CollectionError(
        f'Operation "{operation}" timed out after {timeout_seconds}s',
        ErrorCode.TIMEOUT,
        context={"operation": operation, "timeout_seconds": timeout_seconds},
    )


def conflict(resource: str, reason: str) -> CollectionError:
    """Build a ``CONFLICT`` error."""
    return CollectionError(
        f"Conflict with {resource}: {reason}",
        ErrorCode.CONFLICT,
        context={"resource": resource, "reason": reason},
    )


def normalize_error(
    exc: BaseException,
    code: ErrorCode | str = ErrorCode.UNKNOWN_ERROR,
    message: str | None = None,
) -> CollectionError:
    """
    Convert any exception into a :class:`CollectionError`.

    Already-normalized errors pass through unchanged. Well-known platform
    exceptions map to their taxonomy kind; everything else gets ``code``.
    """
    if isinstance(exc, CollectionError):
        return exc
    if isinstance(exc, PermissionError):
        resolved = ErrorCode.PERMISSION_DENIED
    elif isinstance(exc, TimeoutError):
        resolved = ErrorCode.TIMEOUT
    elif isinstance(exc, ConnectionError):
        resolved = ErrorCode.NETWORK_ERROR
    else:
        resolved = ErrorCode(code)
    text = message or str(exc) or "An unknown error occurred"
    return CollectionError(text, resolved, original=exc)


class BackendConfigurationError(CollectionSyncError):
    """Raised when a repository backend name or its options are invalid."""


class BackendNotAvailableError(CollectionSyncError):
    """
    Raised when a known backend cannot be loaded.

    The Redis backend needs the ``redis`` client library to be importable.
    """


class CacheClosedError(CollectionSyncError):
    """Raised when a :class:`~collection_sync.cache.CacheStore` is used after ``close``."""


class UnsupportedFormatError(CollectionSyncError):
    """Raised when an export format name is not recognized."""
