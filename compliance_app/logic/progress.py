# compliance_app/logic/progress.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple

from catalog.models import RequirementDefinition
from compliance_app.models import ComplianceRecord

Status = ComplianceRecord.Status

COMPLETED = {Status.APPROVED}
IN_PROGRESS = {Status.SUBMITTED}
PENDING = {Status.PENDING, Status.REJECTED}


def completion_percentage(completed: int, total: int) -> int:
    """round(100 * completed / total), halves rounded up; 0 when nothing applies."""
    if total <= 0:
        return 0
    completed = max(0, min(completed, total))
    return (200 * completed + total) // (2 * total)


@dataclass(frozen=True)
class TypeBreakdown:
    requirement_type: str
    total: int
    completed: int
    in_progress: int
    pending: int
    points_earned: int
    points_total: int

    @property
    def remaining(self) -> int:
        return self.total - self.completed

    @property
    def percentage(self) -> int:
        return completion_percentage(self.completed, self.total)


@dataclass(frozen=True)
class NextRequirement:
    id: int
    name: str
    requirement_type: str
    due_at: Optional[object] = None


@dataclass(frozen=True)
class Progress:
    total: int
    completed: int
    in_progress: int
    pending: int
    percentage: int
    points_earned: int
    points_total: int
    by_type: Tuple[TypeBreakdown, ...] = ()
    next_requirement: Optional[NextRequirement] = None


Item = Tuple[RequirementDefinition, Optional[ComplianceRecord]]


def _status(record: Optional[ComplianceRecord]) -> str:
    return record.status if record is not None else Status.PENDING


def _next_requirement(items: List[Item]) -> Optional[NextRequirement]:
    pending = [(req, rec) for req, rec in items if _status(rec) in PENDING]
    if not pending:
        return None

    def sort_key(item):
        req, rec = item
        due = rec.due_at if rec is not None else None
        # dated items first, soonest due; then catalog order
        return (due is None, due.timestamp() if due else 0, req.display_order, req.pk or 0)

    req, rec = min(pending, key=sort_key)
    return NextRequirement(
        id=req.pk,
        name=req.name,
        requirement_type=req.requirement_type,
        due_at=rec.due_at if rec is not None else None,
    )


def aggregate(items: Iterable[Item]) -> Progress:
    """
    Project the applicable (requirement, record) pairs of one user into counts and
    points. A requirement without a record counts as pending. Overridden
    (not_applicable) pairs are skipped.
    """
    items = [(req, rec) for req, rec in items if _status(rec) != Status.NOT_APPLICABLE]

    groups = {}
    totals = {"completed": 0, "in_progress": 0, "pending": 0, "earned": 0, "points": 0}
    for req, rec in items:
        status = _status(rec)
        g = groups.setdefault(
            req.requirement_type,
            {"total": 0, "completed": 0, "in_progress": 0, "pending": 0, "earned": 0, "points": 0},
        )
        g["total"] += 1
        g["points"] += req.points_value
        totals["points"] += req.points_value
        if status in COMPLETED:
            bucket = "completed"
            g["earned"] += req.points_value
            totals["earned"] += req.points_value
        elif status in IN_PROGRESS:
            bucket = "in_progress"
        else:
            bucket = "pending"
        g[bucket] += 1
        totals[bucket] += 1

    by_type = tuple(
        TypeBreakdown(
            requirement_type=rtype,
            total=g["total"],
            completed=g["completed"],
            in_progress=g["in_progress"],
            pending=g["pending"],
            points_earned=g["earned"],
            points_total=g["points"],
        )
        for rtype, g in sorted(groups.items())
    )

    total = len(items)
    return Progress(
        total=total,
        completed=totals["completed"],
        in_progress=totals["in_progress"],
        pending=totals["pending"],
        percentage=completion_percentage(totals["completed"], total),
        points_earned=totals["earned"],
        points_total=totals["points"],
        by_type=by_type,
        next_requirement=_next_requirement(items),
    )
