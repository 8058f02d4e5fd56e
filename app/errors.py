# app/errors.py
from __future__ import annotations


class ReconcileError(Exception):
    """
    Base for domain errors. `code` is a stable machine-readable identifier
    (e.g. "PAYOUT_REQUEST_NOT_PENDING"); the HTTP mapping lives in services/errors.py.
    """

    code = "RECONCILE_ERROR"

    def __init__(self, code: str | None = None, message: str | None = None):
        if code:
            self.code = code
        self.message = message or self.code
        super().__init__(self.message)


class ValidationError(ReconcileError):
    code = "VALIDATION_ERROR"


class Unauthenticated(ReconcileError):
    code = "UNAUTHORIZED"


class Forbidden(ReconcileError):
    code = "FORBIDDEN"


class NotFound(ReconcileError):
    code = "NOT_FOUND"


class Conflict(ReconcileError):
    code = "CONFLICT"


class UpstreamFailure(ReconcileError):
    code = "UPSTREAM_FAILURE"
