"""
Error taxonomy for duplicate detection and merge resolution.

Routes translate these into HTTP responses via ``http_status``; services
raise them and never swallow them.
"""

from __future__ import annotations

from http import HTTPStatus


class DedupeError(RuntimeError):
    """Base class for duplicate engine failures."""

    http_status = HTTPStatus.INTERNAL_SERVER_ERROR
    retryable = False

    def to_dict(self) -> dict:
        return {"error": str(self), "code": type(self).__name__, "retryable": self.retryable}


class NotFound(DedupeError):
    """The duplicate set or one of its records no longer exists."""

    http_status = HTTPStatus.NOT_FOUND


class AlreadyResolved(DedupeError):
    """A resolving action targeted a set that is no longer pending."""

    http_status = HTTPStatus.CONFLICT


class ValidationFailed(DedupeError, ValueError):
    """Malformed input, such as a master id that is not part of the set."""

    http_status = HTTPStatus.BAD_REQUEST


class ExternalValidatorUnavailable(DedupeError):
    """The semantic validator timed out, errored or returned garbage."""

    http_status = HTTPStatus.SERVICE_UNAVAILABLE
    retryable = True


class TransactionFailed(DedupeError):
    """The merge transaction failed and was rolled back."""

    http_status = HTTPStatus.SERVICE_UNAVAILABLE
    retryable = True


class UndoRefused(DedupeError):
    """Undo cannot reconstruct the absorbed record safely."""

    http_status = HTTPStatus.CONFLICT


__all__ = [
    "AlreadyResolved",
    "DedupeError",
    "ExternalValidatorUnavailable",
    "NotFound",
    "TransactionFailed",
    "UndoRefused",
    "ValidationFailed",
]
