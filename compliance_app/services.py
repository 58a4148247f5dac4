# compliance_app/services.py
"""
Entry points of the compliance engine. Views, admin actions and other services
call these; each either succeeds completely or raises a core.errors exception
without having written anything.
"""
from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from datetime import timedelta
from typing import Any, Dict, List, Optional, Tuple

from django.conf import settings
from django.contrib.auth import get_user_model
from django.db import DatabaseError
from django.utils import timezone

from catalog.eligibility import applicable_requirements, load_catalog
from catalog.models import RequirementDefinition, TierPolicy, TIER_CODES
from catalog.validators import validate_submission
from core.errors import (
    AuthenticationRequired,
    ConflictingState,
    FieldError,
    NotFound,
    NotPermitted,
    StoreUnavailable,
    ValidationFailed,
    INVALID_PAYLOAD,
)
from profiles.identity import Identity, resolve_identity
from profiles.models import InstructorProfile, TierChange

from . import events
from .events import TransitionEvent
from .logic import workflow
from .logic.advancement import AdvancementDecision, evaluate
from .logic.progress import NextRequirement, Progress, TypeBreakdown, aggregate
from .models import ComplianceRecord
from .store import DjangoRecordStore, RecordStore

log = logging.getLogger(__name__)
User = get_user_model()

Status = ComplianceRecord.Status


@dataclass(frozen=True)
class TierInfo:
    user_id: int
    role: str
    tier: str
    display_name: str
    requirements_count: int
    completed_requirements: int
    in_progress_requirements: int
    pending_requirements: int
    completion_percentage: int
    points_earned: int
    points_total: int
    by_type: Tuple[TypeBreakdown, ...]
    next_requirement: Optional[NextRequirement]
    can_advance_tier: bool
    advancement_blocked_reason: Optional[str]
    next_tier: str

    def as_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["by_type"] = [
            dict(asdict(b), remaining=b.remaining, percentage=b.percentage) for b in self.by_type
        ]
        return data


# --------------------------------------------------------------------------------------
# Helpers
# --------------------------------------------------------------------------------------
def _store(store: Optional[RecordStore]) -> RecordStore:
    return store if store is not None else DjangoRecordStore()


def _compliance_settings() -> dict:
    return getattr(settings, "COMPLIANCE", {})


def _get_requirement(requirement_id) -> RequirementDefinition:
    try:
        req = RequirementDefinition.objects.filter(pk=requirement_id).first()
    except (TypeError, ValueError):
        req = None
    except DatabaseError as e:
        raise StoreUnavailable() from e
    if req is None or not req.is_active:
        raise NotFound(f"Requirement {requirement_id} does not exist.")
    return req


def _get_user(user_id, what="User"):
    try:
        user = User.objects.filter(pk=user_id, is_active=True).first()
    except (TypeError, ValueError):
        user = None
    except DatabaseError as e:
        raise StoreUnavailable() from e
    if user is None:
        raise NotFound(f"{what} {user_id} does not exist.")
    return user


def _due_at(requirement: RequirementDefinition, now):
    days = requirement.due_days or _compliance_settings().get("DEFAULT_DUE_DAYS")
    return now + timedelta(days=days) if days else None


def _placeholder(user_id, requirement: RequirementDefinition, now) -> ComplianceRecord:
    return ComplianceRecord(
        user_id=user_id,
        requirement=requirement,
        status=Status.PENDING,
        due_at=_due_at(requirement, now),
        last_checked_at=now,
    )


def _not_applicable_ids(records: List[ComplianceRecord]) -> set:
    return {r.requirement_id for r in records if r.status == Status.NOT_APPLICABLE}


def _applicable(identity: Identity, records: List[ComplianceRecord]) -> List[RequirementDefinition]:
    try:
        catalog = load_catalog()
    except DatabaseError as e:
        raise StoreUnavailable() from e
    return applicable_requirements(catalog, identity.role, identity.tier, _not_applicable_ids(records))


# --------------------------------------------------------------------------------------
# Eligibility
# --------------------------------------------------------------------------------------
def list_applicable_requirements(user_id, *, store: Optional[RecordStore] = None) -> List[RequirementDefinition]:
    identity = resolve_identity(user_id)
    records = _store(store).list_for_user(identity.user_id)
    return _applicable(identity, records)


def assign_requirements(user_id, *, store: Optional[RecordStore] = None) -> int:
    """
    Create pending placeholders for applicable requirements that have no record yet
    and stamp last_checked_at on the rest. Returns the number of records created.
    Nothing is ever removed: records from an earlier tier stay for audit.
    """
    store = _store(store)
    identity = resolve_identity(user_id)
    now = timezone.now()

    with store.atomic():
        records = store.list_for_user(identity.user_id)
        existing = {r.requirement_id for r in records}
        applicable = _applicable(identity, records)

        created = []
        for req in applicable:
            if req.pk in existing:
                continue
            store.upsert(identity.user_id, req.pk, _placeholder(identity.user_id, req, now))
            created.append(req.pk)
        store.touch(identity.user_id, [r.pk for r in applicable if r.pk in existing], now)

        if created:
            events.emit(TransitionEvent(
                events.REQUIREMENTS_ASSIGNED,
                user_id=identity.user_id,
                metadata={"tier": identity.tier, "requirement_ids": created},
            ))

    log.info("assigned requirements user=%s tier=%s created=%s", identity.user_id, identity.tier, len(created))
    return len(created)


# --------------------------------------------------------------------------------------
# Submission / review
# --------------------------------------------------------------------------------------
def submit_requirement(user_id, requirement_id, payload, *, store: Optional[RecordStore] = None) -> ComplianceRecord:
    """pending/rejected -> submitted for the user's record of `requirement_id`."""
    identity = resolve_identity(user_id)
    requirement = _get_requirement(requirement_id)
    if not requirement.applies_to(identity.role, identity.tier):
        raise NotFound(f"Requirement {requirement.code} is not assigned to this user.")

    normalized = validate_submission(requirement, payload)

    store = _store(store)
    now = timezone.now()
    with store.atomic():
        record = store.get(identity.user_id, requirement.pk, for_update=True)
        if record is None:
            record = _placeholder(identity.user_id, requirement, now)
        submission = workflow.submit(record, normalized, submitted_by=identity.user_id, now=now)
        store.upsert(identity.user_id, requirement.pk, record, submission=submission)
        events.emit(TransitionEvent(
            events.REQUIREMENT_SUBMITTED,
            user_id=identity.user_id,
            requirement_id=requirement.pk,
            actor_id=identity.user_id,
            metadata={"submission": submission.pk, "sequence": submission.sequence},
        ))

    log.info(
        "requirement submitted user=%s requirement=%s sequence=%s",
        identity.user_id, requirement.code, submission.sequence,
    )
    return record


def review_submission(
    submission_id,
    reviewer_id,
    decision: str,
    notes: Optional[str] = "",
    *,
    store: Optional[RecordStore] = None,
) -> ComplianceRecord:
    """
    Apply a reviewer decision ("approve"/"reject") to a submission.
    Approving an already-approved submission returns the record unchanged.
    """
    decision, notes = workflow.check_decision(decision, notes)
    if not reviewer_id:
        raise AuthenticationRequired("A reviewer is required to decide on a submission.")
    reviewer = _get_user(reviewer_id, "Reviewer")

    store = _store(store)
    now = timezone.now()
    with store.atomic():
        submission = store.get_submission(submission_id, for_update=True)
        if submission is None:
            raise NotFound(f"Submission {submission_id} does not exist.")
        record = submission.record

        changed = workflow.decide(record, submission, decision, reviewer.pk, notes, now=now)
        if not changed:
            return record

        store.upsert(record.user_id, record.requirement_id, record, submission=submission)
        events.emit(TransitionEvent(
            events.REQUIREMENT_APPROVED if decision == workflow.APPROVE else events.REQUIREMENT_REJECTED,
            user_id=record.user_id,
            requirement_id=record.requirement_id,
            actor_id=reviewer.pk,
            metadata={"submission": submission.pk, "notes": notes},
        ))

    log.info(
        "submission reviewed submission=%s decision=%s reviewer=%s",
        submission.pk, decision, reviewer.pk,
    )
    return record


def override_not_applicable(
    user_id,
    requirement_id,
    actor_id,
    reason: str = "",
    *,
    store: Optional[RecordStore] = None,
) -> ComplianceRecord:
    """Administrative exclusion of one requirement for one user."""
    if not actor_id:
        raise AuthenticationRequired()
    actor = _get_user(actor_id, "User")
    if not actor.is_staff:
        raise NotPermitted("Only administrators can mark requirements as not applicable.")
    identity = resolve_identity(user_id)
    requirement = _get_requirement(requirement_id)

    store = _store(store)
    now = timezone.now()
    with store.atomic():
        record = store.get(identity.user_id, requirement.pk, for_update=True)
        if record is None:
            record = _placeholder(identity.user_id, requirement, now)
        if not workflow.mark_not_applicable(record, actor.pk, reason, now=now):
            return record
        store.upsert(identity.user_id, requirement.pk, record)
        events.emit(TransitionEvent(
            events.REQUIREMENT_NOT_APPLICABLE,
            user_id=identity.user_id,
            requirement_id=requirement.pk,
            actor_id=actor.pk,
            metadata={"reason": record.override_reason},
        ))

    log.info("requirement excluded user=%s requirement=%s actor=%s", identity.user_id, requirement.code, actor.pk)
    return record


# --------------------------------------------------------------------------------------
# Progress / advancement
# --------------------------------------------------------------------------------------
def _progress_for(identity: Identity, store: RecordStore) -> Progress:
    records = store.list_for_user(identity.user_id)
    by_requirement = {r.requirement_id: r for r in records}
    applicable = _applicable(identity, records)
    return aggregate((req, by_requirement.get(req.pk)) for req in applicable)


def _policy_for(identity: Identity) -> Optional[TierPolicy]:
    try:
        return TierPolicy.for_identity(identity.role, identity.tier)
    except DatabaseError as e:
        raise StoreUnavailable() from e


def get_progress(user_id, *, store: Optional[RecordStore] = None) -> TierInfo:
    identity = resolve_identity(user_id)
    progress = _progress_for(identity, _store(store))
    decision = evaluate(progress, _policy_for(identity), identity.tier)
    return TierInfo(
        user_id=identity.user_id,
        role=identity.role,
        tier=identity.tier,
        display_name=identity.display_name,
        requirements_count=progress.total,
        completed_requirements=progress.completed,
        in_progress_requirements=progress.in_progress,
        pending_requirements=progress.pending,
        completion_percentage=progress.percentage,
        points_earned=progress.points_earned,
        points_total=progress.points_total,
        by_type=progress.by_type,
        next_requirement=progress.next_requirement,
        can_advance_tier=decision.eligible,
        advancement_blocked_reason=decision.reason,
        next_tier=decision.next_tier,
    )


def can_advance_tier(user_id, *, store: Optional[RecordStore] = None) -> AdvancementDecision:
    identity = resolve_identity(user_id)
    progress = _progress_for(identity, _store(store))
    return evaluate(progress, _policy_for(identity), identity.tier)


def change_tier(
    user_id,
    new_tier: str,
    changed_by,
    reason: str = "",
    *,
    store: Optional[RecordStore] = None,
) -> TierChange:
    """
    Move a user to `new_tier`. Stepping up along the tier policy requires
    can_advance_tier to say yes; any other move is an administrator action.
    Records a TierChange and assigns the new tier's requirements.
    """
    if not changed_by:
        raise AuthenticationRequired()
    if new_tier not in TIER_CODES:
        raise ValidationFailed([FieldError("new_tier", INVALID_PAYLOAD, f"Unknown tier '{new_tier}'.")])
    actor = _get_user(changed_by, "User")
    identity = resolve_identity(user_id)

    if new_tier == identity.tier:
        raise ConflictingState("User is already in the requested tier.")
    locked = _compliance_settings().get("ROLE_TIER_LOCKS", {}).get(identity.role)
    if locked and new_tier != locked:
        raise ConflictingState(f"Role {identity.role} must stay in the {locked} tier.")

    store = _store(store)
    policy = _policy_for(identity)
    if policy is not None and policy.next_tier == new_tier:
        decision = evaluate(_progress_for(identity, store), policy, identity.tier)
        if not decision.eligible:
            raise ConflictingState(decision.reason)
    elif not actor.is_staff:
        raise NotPermitted("Only administrators can move users outside the advancement path.")

    with store.atomic():
        profile = InstructorProfile.objects.select_for_update().get(user_id=identity.user_id)
        if profile.tier != identity.tier:
            raise ConflictingState("The user's tier changed concurrently; reload and try again.")
        profile.tier = new_tier
        profile.save(update_fields=["tier", "updated_at"])

        change = TierChange.objects.create(
            user_id=identity.user_id,
            old_tier=identity.tier,
            new_tier=new_tier,
            changed_by=actor,
            reason=(reason or "").strip(),
        )
        change.requirements_affected = assign_requirements(identity.user_id, store=store)
        change.save(update_fields=["requirements_affected"])

        events.emit(TransitionEvent(
            events.TIER_CHANGED,
            user_id=identity.user_id,
            actor_id=actor.pk,
            metadata={
                "old_tier": identity.tier,
                "new_tier": new_tier,
                "reason": change.reason,
                "requirements_affected": change.requirements_affected,
            },
        ))

    log.info(
        "tier changed user=%s %s -> %s by=%s",
        identity.user_id, identity.tier, new_tier, actor.pk,
    )
    return change
