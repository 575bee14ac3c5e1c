"""Error taxonomy shared by the pipeline components.

Every domain error carries a short ``label`` and the ``status_code`` the API
layer should answer with. Callers outside the core only ever see the label,
never the message.
"""

from __future__ import annotations


class PioneerTrackerError(Exception):
    """Base exception for all pipeline errors."""

    label = "internal_error"
    status_code = 500
    retryable = False


class NotFoundError(PioneerTrackerError):
    """Raised when a wallet or protocol is unknown to its registry."""

    label = "not_found"
    status_code = 404


class ValidationError(PioneerTrackerError):
    """Raised for malformed addresses or out-of-range filters.

    Always raised before any state mutation.
    """

    label = "validation_error"
    status_code = 400


class TransientIOError(PioneerTrackerError):
    """Raised when persistence or a registry lookup times out or keeps failing."""

    label = "transient_io_error"
    retryable = True


class ConcurrencyConflictError(PioneerTrackerError):
    """Raised when a per-wallet or per-protocol lock cannot be acquired in time."""

    label = "concurrency_conflict"
    retryable = True


def http_status_for(exc: BaseException) -> int:
    """Map any exception to the status code exposed by the API layer."""
    if isinstance(exc, PioneerTrackerError):
        return exc.status_code
    return 500


def error_label(exc: BaseException) -> str:
    """Return the public error class label for an exception."""
    if isinstance(exc, PioneerTrackerError):
        return exc.label
    return PioneerTrackerError.label
