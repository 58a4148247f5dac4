# catalog/eligibility.py
from __future__ import annotations

from typing import AbstractSet, Iterable, List

from .models import RequirementDefinition


def applicable_requirements(
    catalog: Iterable[RequirementDefinition],
    role: str,
    tier: str,
    not_applicable_ids: AbstractSet[int] = frozenset(),
) -> List[RequirementDefinition]:
    """
    Requirements from `catalog` that apply to a (role, tier) pair, in catalog order.

    `not_applicable_ids` holds requirement ids a user's records have been overridden
    to not_applicable; those are dropped even when the catalog matches. Inactive
    definitions never apply.
    """
    return [
        req
        for req in catalog
        if req.is_active
        and req.applies_to(role, tier)
        and req.pk not in not_applicable_ids
    ]


def load_catalog() -> List[RequirementDefinition]:
    """Snapshot of the active catalog in display order."""
    return list(RequirementDefinition.objects.active().catalog_order())
