# compliance_app/logic/advancement.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from .progress import Progress, completion_percentage


@dataclass(frozen=True)
class AdvancementDecision:
    eligible: bool
    reason: Optional[str] = None
    next_tier: str = ""

    def as_dict(self) -> dict:
        data = {"eligible": self.eligible}
        if self.reason:
            data["reason"] = self.reason
        if self.next_tier:
            data["next_tier"] = self.next_tier
        return data


def requirements_needed(completed: int, total: int, min_percentage: int) -> Optional[int]:
    """
    Fewest further approvals that bring the (rounded) completion percentage up to
    `min_percentage`. None if even completing everything would not be enough.
    """
    for extra in range(0, total - completed + 1):
        if completion_percentage(completed + extra, total) >= min_percentage:
            return extra
    return None


def evaluate(progress: Progress, policy, tier: str) -> AdvancementDecision:
    """
    Answer "may this user request the next tier?" for `policy` (a TierPolicy or
    anything with next_tier/min_completion_percentage/min_points). Does not move
    anyone; callers gate the tier change on the answer.
    """
    if policy is None:
        return AdvancementDecision(False, f"No advancement policy is configured for tier {tier}.")
    if not policy.next_tier:
        return AdvancementDecision(False, f"Tier {tier} is the highest tier.")

    blockers = []
    min_pct = policy.min_completion_percentage
    if min_pct is not None and progress.percentage < min_pct:
        needed = requirements_needed(progress.completed, progress.total, min_pct)
        if needed is None:
            blockers.append(f"Tier {tier} has no requirements that can reach {min_pct}% completion")
        else:
            blockers.append(f"Complete {needed} more requirement(s) to advance")

    min_points = policy.min_points
    if min_points is not None and progress.points_earned < min_points:
        blockers.append(f"Earn {min_points - progress.points_earned} more point(s) to advance")

    if blockers:
        return AdvancementDecision(False, "; ".join(blockers), policy.next_tier)
    return AdvancementDecision(True, None, policy.next_tier)
