# catalog/loader.py
from __future__ import annotations

import logging
from typing import Any, Dict

from django.db import transaction

from .models import RequirementDefinition, TierPolicy
from .serializers import RequirementDefinitionSerializer, TierPolicySerializer

log = logging.getLogger(__name__)


class CatalogLoadError(Exception):
    pass


def load_catalog_data(data: Dict[str, Any], *, publish: bool = False) -> Dict[str, int]:
    """
    Upsert requirements (matched on `code`) and tier policies (matched on tier+role)
    from a dict shaped like:

        {"requirements": [{...}, ...], "policies": [{...}, ...]}

    Everything is validated by the API serializers and written in one transaction;
    any invalid entry aborts the whole load.
    """
    if not isinstance(data, dict):
        raise CatalogLoadError("Catalog file must contain an object.")

    counts = {"created": 0, "updated": 0, "policies": 0}
    with transaction.atomic():
        for i, entry in enumerate(data.get("requirements") or []):
            code = (entry or {}).get("code")
            if not code:
                raise CatalogLoadError(f"requirements[{i}]: code is required.")
            instance = RequirementDefinition.objects.filter(code=code).first()
            ser = RequirementDefinitionSerializer(instance=instance, data=entry, partial=instance is not None)
            if not ser.is_valid():
                raise CatalogLoadError(f"requirements[{i}] ({code}): {ser.errors}")
            req = ser.save()
            if publish:
                req.publish()
            counts["updated" if instance else "created"] += 1

        for i, entry in enumerate(data.get("policies") or []):
            entry = entry or {}
            instance = TierPolicy.objects.filter(
                tier=entry.get("tier"), role=entry.get("role") or ""
            ).first()
            ser = TierPolicySerializer(instance=instance, data=entry)
            if not ser.is_valid():
                raise CatalogLoadError(f"policies[{i}]: {ser.errors}")
            ser.save()
            counts["policies"] += 1

    log.info(
        "catalog loaded created=%s updated=%s policies=%s",
        counts["created"], counts["updated"], counts["policies"],
    )
    return counts
