# compliance_app/logic/workflow.py
"""
Record lifecycle:

    pending  --submit-->  submitted  --approve-->  approved
    rejected --submit-->  submitted  --reject--->  rejected
    (any)    --override-> not_applicable

These functions only mutate the in-memory record/submission; persisting them
(atomically, with the version check) is the record store's job.
"""
from __future__ import annotations

from core.errors import (
    AuthenticationRequired,
    ConflictingState,
    FeedbackRequired,
    FieldError,
    ValidationFailed,
    INVALID_DECISION,
)
from compliance_app.models import ComplianceRecord, Submission

Status = ComplianceRecord.Status

APPROVE = "approve"
REJECT = "reject"
DECISIONS = (APPROVE, REJECT)

ALLOWED_TRANSITIONS = {
    Status.PENDING: {Status.SUBMITTED, Status.NOT_APPLICABLE},
    Status.SUBMITTED: {Status.APPROVED, Status.REJECTED, Status.NOT_APPLICABLE},
    Status.REJECTED: {Status.SUBMITTED, Status.NOT_APPLICABLE},
    Status.APPROVED: {Status.NOT_APPLICABLE},
    Status.NOT_APPLICABLE: set(),
}


def can_transition(current: str, target: str) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, set())


def _ensure_transition(record: ComplianceRecord, target: str, action: str) -> None:
    if not can_transition(record.status, target):
        raise ConflictingState(
            f"Cannot {action} a requirement that is {record.get_status_display().lower()}."
        )


def check_decision(decision: str, notes: str | None) -> tuple[str, str]:
    """Normalize a reviewer decision; rejection without notes is refused outright."""
    decision = (decision or "").strip().lower()
    if decision not in DECISIONS:
        raise ValidationFailed(
            [FieldError("decision", INVALID_DECISION, "Decision must be 'approve' or 'reject'.")]
        )
    notes = (notes or "").strip()
    if decision == REJECT and not notes:
        raise FeedbackRequired()
    return decision, notes


def submit(record: ComplianceRecord, payload: dict, *, submitted_by, now) -> Submission:
    """pending/rejected -> submitted. Returns the new (unsaved) history row."""
    if not submitted_by:
        raise AuthenticationRequired()
    _ensure_transition(record, Status.SUBMITTED, "submit")

    record.submission_count += 1
    record.status = Status.SUBMITTED
    record.submission_data = payload
    record.submitted_at = now
    # the previous decision stays on its Submission row
    record.reviewer_id = None
    record.review_notes = ""
    record.reviewed_at = None

    return Submission(
        record=record,
        sequence=record.submission_count,
        payload=payload,
        submitted_at=now,
        submitted_by_id=submitted_by,
    )


def decide(
    record: ComplianceRecord,
    submission: Submission,
    decision: str,
    reviewer_id,
    notes: str | None = "",
    *,
    now,
) -> bool:
    """
    submitted -> approved | rejected.

    Returns False when nothing changed (approving an already-approved current
    submission), True when the record and submission were updated.
    """
    decision, notes = check_decision(decision, notes)
    if not reviewer_id:
        raise AuthenticationRequired("A reviewer is required to decide on a submission.")

    if submission.sequence != record.submission_count:
        raise ConflictingState("This submission has been superseded by a newer one.")

    if (
        decision == APPROVE
        and record.status == Status.APPROVED
        and submission.decision == Submission.Decision.APPROVED
    ):
        return False

    target = Status.APPROVED if decision == APPROVE else Status.REJECTED
    if record.status != Status.SUBMITTED:
        raise ConflictingState(
            f"Only submitted requirements can be reviewed; this one is "
            f"{record.get_status_display().lower()}."
        )
    _ensure_transition(record, target, decision)

    record.status = target
    record.reviewer_id = reviewer_id
    record.review_notes = notes
    record.reviewed_at = now

    submission.decision = (
        Submission.Decision.APPROVED if decision == APPROVE else Submission.Decision.REJECTED
    )
    submission.reviewer_id = reviewer_id
    submission.review_notes = notes
    submission.decided_at = now
    return True


def mark_not_applicable(record: ComplianceRecord, actor_id, reason: str = "", *, now) -> bool:
    """Administrative override; returns False if the record was already overridden."""
    if not actor_id:
        raise AuthenticationRequired()
    if record.status == Status.NOT_APPLICABLE:
        return False
    _ensure_transition(record, Status.NOT_APPLICABLE, "exclude")

    record.status = Status.NOT_APPLICABLE
    record.override_reason = (reason or "").strip()
    record.reviewer_id = actor_id
    record.reviewed_at = now
    return True
