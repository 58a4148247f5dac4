# compliance_app/events.py
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from django.db import transaction
from django.dispatch import Signal

log = logging.getLogger(__name__)

REQUIREMENT_SUBMITTED = "requirement_submitted"
REQUIREMENT_APPROVED = "requirement_approved"
REQUIREMENT_REJECTED = "requirement_rejected"
REQUIREMENT_NOT_APPLICABLE = "requirement_not_applicable"
REQUIREMENTS_ASSIGNED = "requirements_assigned"
TIER_CHANGED = "tier_changed"

# Receivers get `event=TransitionEvent`. Delivery is best effort: a failing
# receiver is logged and never affects the transition that emitted the event.
transition = Signal()


@dataclass(frozen=True)
class TransitionEvent:
    action: str
    user_id: int
    requirement_id: Optional[int] = None
    actor_id: Optional[int] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


def deliver(event: TransitionEvent) -> None:
    for receiver, result in transition.send_robust(sender=TransitionEvent, event=event):
        if isinstance(result, Exception):
            log.warning(
                "transition receiver %r failed for %s user=%s: %s",
                receiver, event.action, event.user_id, result,
            )


def emit(event: TransitionEvent) -> None:
    """Queue `event` for delivery once the surrounding transaction commits."""
    transaction.on_commit(lambda: deliver(event))


def record_activity(sender, event: TransitionEvent, **kwargs):
    """Default receiver: audit row + log line."""
    from .models import ComplianceActivity

    ComplianceActivity.objects.create(
        user_id=event.user_id,
        action=event.action,
        requirement_id=event.requirement_id,
        actor_id=event.actor_id,
        metadata=event.metadata,
    )
    log.info(
        "%s user=%s requirement=%s actor=%s",
        event.action, event.user_id, event.requirement_id, event.actor_id,
    )
