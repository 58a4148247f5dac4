# compliance_app/store.py
from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterable, List, Optional, Protocol

from django.db import DatabaseError, IntegrityError, transaction
from django.db.models import F
from django.utils import timezone

from core.errors import ConflictingState, StoreUnavailable
from .models import ComplianceRecord, Submission

log = logging.getLogger(__name__)

# Columns a state transition may change; everything else is identity or bookkeeping.
WRITABLE_FIELDS = (
    "status",
    "submission_data",
    "submitted_at",
    "reviewer_id",
    "review_notes",
    "reviewed_at",
    "override_reason",
    "due_at",
    "last_checked_at",
    "submission_count",
)


class RecordStore(Protocol):
    """What the engine needs from persistence. Implementations must make upsert atomic per key."""

    def atomic(self): ...

    def get(self, user_id, requirement_id, *, for_update: bool = False) -> Optional[ComplianceRecord]: ...

    def upsert(
        self, user_id, requirement_id, record: ComplianceRecord, *, submission: Optional[Submission] = None
    ) -> ComplianceRecord: ...

    def list_for_user(self, user_id) -> List[ComplianceRecord]: ...

    def get_submission(self, submission_id, *, for_update: bool = False) -> Optional[Submission]: ...

    def touch(self, user_id, requirement_ids: Iterable[int], when) -> int: ...


class DjangoRecordStore:
    """
    ORM-backed record store.

    Writes go through `upsert`, which inserts new records and otherwise performs a
    compare-and-swap on `version`: a writer holding a stale copy gets
    ConflictingState instead of overwriting someone else's decision. Database
    failures surface as StoreUnavailable with the original error chained.
    """

    @contextmanager
    def atomic(self):
        try:
            with transaction.atomic():
                yield
        except IntegrityError as e:
            # a concurrent insert of the same (user, requirement) key won
            log.warning("compliance store integrity conflict: %s", e)
            raise ConflictingState("The record was changed concurrently; reload and try again.") from e
        except DatabaseError as e:
            log.error("compliance store unavailable: %s", e)
            raise StoreUnavailable() from e

    def _guard(self, fn, *args, **kwargs):
        try:
            return fn(*args, **kwargs)
        except DatabaseError as e:
            log.error("compliance store unavailable: %s", e)
            raise StoreUnavailable() from e

    def get(self, user_id, requirement_id, *, for_update=False):
        def _get():
            qs = ComplianceRecord.objects.select_related("requirement")
            if for_update:
                qs = qs.select_for_update(of=("self",))
            return qs.filter(user_id=user_id, requirement_id=requirement_id).first()
        return self._guard(_get)

    def list_for_user(self, user_id):
        return self._guard(
            lambda: list(
                ComplianceRecord.objects.select_related("requirement")
                .filter(user_id=user_id)
                .order_by("requirement__display_order", "requirement_id")
            )
        )

    def get_submission(self, submission_id, *, for_update=False):
        def _get():
            qs = Submission.objects.select_related("record", "record__requirement")
            if for_update:
                qs = qs.select_for_update(of=("self", "record"))
            return qs.filter(pk=submission_id).first()
        try:
            return self._guard(_get)
        except (TypeError, ValueError):
            return None

    def upsert(self, user_id, requirement_id, record, *, submission=None):
        if record.user_id != user_id or record.requirement_id != requirement_id:
            raise ValueError("Record does not belong to the given (user, requirement) key.")

        with self.atomic():
            if record.pk is None:
                record.version = 1
                record.save(force_insert=True)
            else:
                now = timezone.now()
                changes = {name: getattr(record, name) for name in WRITABLE_FIELDS}
                updated = (
                    ComplianceRecord.objects
                    .filter(pk=record.pk, version=record.version)
                    .update(**changes, updated_at=now, version=F("version") + 1)
                )
                if not updated:
                    raise ConflictingState(
                        "The record was changed by someone else; reload and try again."
                    )
                record.version += 1
                record.updated_at = now

            if submission is not None:
                submission.record = record
                submission.save()
        return record

    def touch(self, user_id, requirement_ids, when):
        return self._guard(
            lambda: ComplianceRecord.objects.filter(
                user_id=user_id, requirement_id__in=list(requirement_ids)
            ).update(last_checked_at=when)
        )
