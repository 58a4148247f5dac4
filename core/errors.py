# core/errors.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, List


class ComplianceError(Exception):
    """
    Base for every failure the compliance engine reports to its callers.
    `code` is stable and machine-readable; `status_code` is the HTTP mapping
    used by the API layer.
    """
    code = "compliance_error"
    status_code = 400
    default_message = "The request could not be completed."

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def as_dict(self) -> dict:
        return {"code": self.code, "detail": self.message}


class AuthenticationRequired(ComplianceError):
    code = "authentication_required"
    status_code = 401
    default_message = "An authenticated user is required."


@dataclass(frozen=True)
class FieldError:
    field: str
    cause: str
    message: str


# Field-level causes carried by ValidationFailed
MISSING_FIELD = "missing_field"
SIZE_EXCEEDED = "size_exceeded"
TYPE_NOT_ALLOWED = "type_not_allowed"
TOO_MANY_FILES = "too_many_files"
SCORE_BELOW_MINIMUM = "score_below_minimum"
MISSING_EVIDENCE = "missing_evidence"
INSUFFICIENT_EVIDENCE = "insufficient_evidence"
INVALID_DECISION = "invalid_decision"
INVALID_PAYLOAD = "invalid_payload"


class ValidationFailed(ComplianceError):
    code = "validation_failed"
    status_code = 400
    default_message = "The submission did not pass validation."

    def __init__(self, errors: Iterable[FieldError], message: str | None = None):
        self.errors: List[FieldError] = list(errors)
        if message is None and self.errors:
            message = "; ".join(e.message for e in self.errors)
        super().__init__(message)

    @property
    def cause(self) -> str | None:
        """The first field-level cause (most callers only need one)."""
        return self.errors[0].cause if self.errors else None

    @property
    def causes(self) -> set:
        return {e.cause for e in self.errors}

    def as_dict(self) -> dict:
        data = super().as_dict()
        data["errors"] = [
            {"field": e.field, "cause": e.cause, "message": e.message} for e in self.errors
        ]
        return data


class NotPermitted(ComplianceError):
    code = "permission_denied"
    status_code = 403
    default_message = "You do not have permission to perform this action."


class FeedbackRequired(ComplianceError):
    code = "feedback_required"
    status_code = 400
    default_message = "Review notes are required when rejecting a submission."


class NotFound(ComplianceError):
    code = "not_found"
    status_code = 404
    default_message = "Not found."


class ConflictingState(ComplianceError):
    code = "conflicting_state"
    status_code = 409
    default_message = "The record is not in a state that allows this action."


class StoreUnavailable(ComplianceError):
    """Raised `from` the underlying database error so the cause is kept for logging."""
    code = "store_unavailable"
    status_code = 503
    default_message = "The compliance record store is unavailable."
