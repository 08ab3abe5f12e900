"""Error taxonomy for the reconciliation engine."""

from __future__ import annotations

from enum import StrEnum


class CalendarSyncError(RuntimeError):
    """Base error raised by the calsync reconciliation core."""


class ConfigurationError(CalendarSyncError):
    """Raised when a binding is missing or disabled; no remote contact is made."""


class AuthenticationError(CalendarSyncError):
    """Raised when a credential is unusable or the provider rejects it."""


class PersistenceError(CalendarSyncError):
    """Raised when committing binding or credential state fails."""


class RemoteErrorCode(StrEnum):
    """Provider error codes surfaced by calendar event repositories."""

    server_busy = "server_busy"
    timeout_expired = "timeout_expired"
    connection_failed = "connection_failed"
    internal_server_transient_error = "internal_server_transient_error"
    authentication_failed = "authentication_failed"
    item_not_found = "item_not_found"
    access_denied = "access_denied"
    invalid_request = "invalid_request"
    internal_server_error = "internal_server_error"


TRANSIENT_ERROR_CODES = frozenset(
    {
        RemoteErrorCode.server_busy,
        RemoteErrorCode.timeout_expired,
        RemoteErrorCode.connection_failed,
        RemoteErrorCode.internal_server_transient_error,
    }
)


class RemoteError(CalendarSyncError):
    """Raised when a remote calendar provider call fails."""

    def __init__(self, code: RemoteErrorCode | str, message: str) -> None:
        self.code = RemoteErrorCode(code)
        self.message = message
        super().__init__(f"Remote calendar call failed ({self.code}): {message}")


class TransientRemoteError(RemoteError):
    """Remote failure that is safe to retry (busy, timeout, connection)."""


class PermanentRemoteError(RemoteError):
    """Remote failure that must not be retried (e.g. not-found, access denied)."""


class RetryExhaustedError(RemoteError):
    """Raised when every attempt of a retried operation failed transiently."""

    def __init__(self, attempts: int, last_error: BaseException) -> None:
        self.attempts = attempts
        self.last_error = last_error
        code = getattr(last_error, "code", RemoteErrorCode.internal_server_transient_error)
        super().__init__(
            code,
            f"operation failed after initial attempt and {attempts - 1} retry attempts: "
            f"{last_error}",
        )


def remote_error(code: RemoteErrorCode | str, message: str) -> CalendarSyncError:
    """Build the exception class matching a provider error *code*.

    ``authentication_failed`` maps to :class:`AuthenticationError`; the
    transient codes map to :class:`TransientRemoteError`; anything else is a
    :class:`PermanentRemoteError`.
    """
    normalized = RemoteErrorCode(code)
    if normalized is RemoteErrorCode.authentication_failed:
        return AuthenticationError(message)
    if normalized in TRANSIENT_ERROR_CODES:
        return TransientRemoteError(normalized, message)
    return PermanentRemoteError(normalized, message)
