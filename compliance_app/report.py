# compliance_app/report.py
from __future__ import annotations

from typing import Any, Dict, List

from django.utils import timezone

from profiles.models import TierChange
from .models import ComplianceRecord
from . import services

# -----------------------------------------------------------------------------
# JSON Schema (draft-07) for the progress report export. "records" lists every
# record the user has, including ones outside the current tier, so the export
# doubles as an audit trail.
# -----------------------------------------------------------------------------
PROGRESS_REPORT_JSON_SCHEMA: Dict[str, Any] = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "title": "Instructor compliance progress report",
    "type": "object",
    "required": ["generated_at", "instructor", "summary", "records"],
    "properties": {
        "generated_at": {"type": "string", "format": "date-time"},
        "instructor": {
            "type": "object",
            "required": ["user_id", "role", "tier"],
            "properties": {
                "user_id": {"type": "integer"},
                "display_name": {"type": "string"},
                "role": {"type": "string", "enum": ["AP", "IC", "IP", "IT"]},
                "tier": {"type": "string", "enum": ["basic", "robust"]},
            },
        },
        "summary": {
            "type": "object",
            "required": ["requirements_count", "completed_requirements", "completion_percentage"],
            "properties": {
                "requirements_count": {"type": "integer", "minimum": 0},
                "completed_requirements": {"type": "integer", "minimum": 0},
                "in_progress_requirements": {"type": "integer", "minimum": 0},
                "pending_requirements": {"type": "integer", "minimum": 0},
                "completion_percentage": {"type": "integer", "minimum": 0, "maximum": 100},
                "points_earned": {"type": "integer", "minimum": 0},
                "points_total": {"type": "integer", "minimum": 0},
            },
        },
        "advancement": {
            "type": "object",
            "properties": {
                "eligible": {"type": "boolean"},
                "reason": {"type": ["string", "null"]},
                "next_tier": {"type": "string"},
            },
        },
        "by_type": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "requirement_type": {"type": "string"},
                    "total": {"type": "integer"},
                    "completed": {"type": "integer"},
                    "remaining": {"type": "integer"},
                    "percentage": {"type": "integer"},
                },
            },
        },
        "records": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["requirement", "status"],
                "properties": {
                    "requirement": {"type": "string"},
                    "name": {"type": "string"},
                    "requirement_type": {"type": "string"},
                    "status": {
                        "type": "string",
                        "enum": ["pending", "submitted", "approved", "rejected", "not_applicable"],
                    },
                    "submission_count": {"type": "integer"},
                    "submitted_at": {"type": ["string", "null"], "format": "date-time"},
                    "reviewed_at": {"type": ["string", "null"], "format": "date-time"},
                    "due_at": {"type": ["string", "null"], "format": "date-time"},
                    "review_notes": {"type": "string"},
                },
            },
        },
        "tier_history": {"type": "array", "items": {"type": "object"}},
    },
}


def _fmt(dt):
    """Return local ISO 8601 (minute precision) or None."""
    return None if not dt else timezone.localtime(dt).isoformat(timespec="minutes")


def _record_row(rec: ComplianceRecord) -> Dict[str, Any]:
    req = rec.requirement
    return {
        "requirement": req.code,
        "name": req.name,
        "requirement_type": req.requirement_type,
        "status": rec.status,
        "submission_count": rec.submission_count,
        "submitted_at": _fmt(rec.submitted_at),
        "reviewed_at": _fmt(rec.reviewed_at),
        "due_at": _fmt(rec.due_at),
        "review_notes": rec.review_notes or "",
    }


def progress_report(user_id) -> Dict[str, Any]:
    """
    Export a user's compliance standing: the progress summary, the advancement
    answer, every record they hold and their tier history.
    """
    info = services.get_progress(user_id)
    records = (
        ComplianceRecord.objects.select_related("requirement")
        .filter(user_id=info.user_id)
        .order_by("requirement__display_order", "requirement_id")
    )
    history: List[Dict[str, Any]] = [
        {
            "old_tier": c.old_tier,
            "new_tier": c.new_tier,
            "reason": c.reason,
            "changed_at": _fmt(c.created_at),
        }
        for c in TierChange.objects.filter(user_id=info.user_id).order_by("created_at", "id")
    ]

    return {
        "generated_at": _fmt(timezone.now()),
        "instructor": {
            "user_id": info.user_id,
            "display_name": info.display_name,
            "role": info.role,
            "tier": info.tier,
        },
        "summary": {
            "requirements_count": info.requirements_count,
            "completed_requirements": info.completed_requirements,
            "in_progress_requirements": info.in_progress_requirements,
            "pending_requirements": info.pending_requirements,
            "completion_percentage": info.completion_percentage,
            "points_earned": info.points_earned,
            "points_total": info.points_total,
        },
        "advancement": {
            "eligible": info.can_advance_tier,
            "reason": info.advancement_blocked_reason,
            "next_tier": info.next_tier,
        },
        "by_type": [
            {
                "requirement_type": b.requirement_type,
                "total": b.total,
                "completed": b.completed,
                "remaining": b.remaining,
                "percentage": b.percentage,
            }
            for b in info.by_type
        ],
        "records": [_record_row(r) for r in records],
        "tier_history": history,
    }
