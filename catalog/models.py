from __future__ import annotations

from django.core.exceptions import ValidationError
from django.core.validators import MaxValueValidator
from django.db import models
from django.utils import timezone

from .rules import ValidationRules


class Role(models.TextChoices):
    AP = "AP", "Authorized Provider"
    IC = "IC", "Certified Instructor"
    IP = "IP", "Provisional Instructor"
    IT = "IT", "Instructor in Training"


class Tier(models.TextChoices):
    BASIC = "basic", "Basic"
    ROBUST = "robust", "Robust"


ROLE_CODES = {value for value, _ in Role.choices}
TIER_CODES = {value for value, _ in Tier.choices}


class RequirementDefinitionQuerySet(models.QuerySet):
    def active(self):
        return self.filter(is_active=True)

    def catalog_order(self):
        return self.order_by("display_order", "id")


class RequirementDefinition(models.Model):
    class Kind(models.TextChoices):
        FORM = "form", "Form"
        FILE_UPLOAD = "file_upload", "File upload"
        EXTERNAL_LINK = "external_link", "External link"

    class RequirementType(models.TextChoices):
        DOCUMENT = "document", "Document"
        TRAINING = "training", "Training"
        CERTIFICATION = "certification", "Certification"
        ASSESSMENT = "assessment", "Assessment"

    # Fields that are frozen once the definition is published
    RULE_FIELDS = (
        "kind",
        "requirement_type",
        "applicable_roles",
        "applicable_tiers",
        "points_value",
        "validation_rules",
    )

    code = models.SlugField(max_length=100, unique=True)
    name = models.CharField(max_length=255)
    description = models.TextField(blank=True)
    kind = models.CharField(max_length=20, choices=Kind.choices)
    requirement_type = models.CharField(
        max_length=20, choices=RequirementType.choices, default=RequirementType.DOCUMENT
    )
    applicable_roles = models.JSONField(default=list, help_text="Role codes, e.g. [\"IT\", \"IP\"].")
    applicable_tiers = models.JSONField(
        default=list, blank=True, help_text="Tier codes; leave empty for every tier."
    )
    points_value = models.PositiveIntegerField(default=0)
    validation_rules = models.JSONField(default=dict, blank=True)
    display_order = models.PositiveIntegerField(default=0)
    due_days = models.PositiveIntegerField(
        null=True, blank=True, help_text="Days from assignment until the requirement is due."
    )

    is_active = models.BooleanField(default=True)
    published_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = RequirementDefinitionQuerySet.as_manager()

    class Meta:
        ordering = ("display_order", "id")

    def __str__(self) -> str:  # pragma: no cover
        return self.name

    # ---- rules / eligibility ----
    @property
    def rules(self) -> ValidationRules:
        return ValidationRules.from_dict(self.validation_rules)

    def applies_to(self, role: str, tier: str) -> bool:
        """Role must be listed; tier must be listed unless no tier restriction is declared."""
        if role not in (self.applicable_roles or []):
            return False
        tiers = self.applicable_tiers or []
        return not tiers or tier in tiers

    # ---- lifecycle ----
    @property
    def is_published(self) -> bool:
        return self.published_at is not None

    def publish(self):
        if not self.published_at:
            self.published_at = timezone.now()
            self.save(update_fields=["published_at", "updated_at"])

    def deactivate(self):
        if self.is_active:
            self.is_active = False
            self.save(update_fields=["is_active", "updated_at"])

    def clean(self):
        errors = {}
        roles = self.applicable_roles or []
        if not isinstance(roles, list) or any(r not in ROLE_CODES for r in roles):
            errors["applicable_roles"] = f"Use role codes from {sorted(ROLE_CODES)}."
        tiers = self.applicable_tiers or []
        if not isinstance(tiers, list) or any(t not in TIER_CODES for t in tiers):
            errors["applicable_tiers"] = f"Use tier codes from {sorted(TIER_CODES)}."
        try:
            ValidationRules.from_dict(self.validation_rules)
        except ValueError as e:
            errors["validation_rules"] = str(e)
        if errors:
            raise ValidationError(errors)

    def _changed_rule_fields(self):
        stored = (
            type(self).objects.filter(pk=self.pk).values(*self.RULE_FIELDS).first()
            if self.pk else None
        )
        if not stored:
            return []
        return [name for name in self.RULE_FIELDS if stored[name] != getattr(self, name)]

    def save(self, *args, **kwargs):
        if self.pk and type(self).objects.filter(pk=self.pk, published_at__isnull=False).exists():
            changed = self._changed_rule_fields()
            if changed:
                raise ValidationError(
                    f"Published requirements are immutable; cannot change {', '.join(changed)}."
                )
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ValidationError("Requirements are never deleted; deactivate them instead.")


class TierPolicy(models.Model):
    """
    Advancement policy for a tier. A row with a role applies to that role only and
    wins over the tier-wide row (blank role).
    """
    tier = models.CharField(max_length=20, choices=Tier.choices)
    role = models.CharField(max_length=4, choices=Role.choices, blank=True, default="")
    next_tier = models.CharField(
        max_length=20, choices=Tier.choices, blank=True, default="",
        help_text="Tier a user may advance to; blank for the highest tier.",
    )
    min_completion_percentage = models.PositiveSmallIntegerField(
        null=True, blank=True, validators=[MaxValueValidator(100)]
    )
    min_points = models.PositiveIntegerField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        unique_together = ("tier", "role")
        ordering = ("tier", "role")
        verbose_name_plural = "tier policies"

    def __str__(self) -> str:  # pragma: no cover
        scope = self.role or "all roles"
        return f"{self.tier} ({scope})"

    @classmethod
    def for_identity(cls, role: str, tier: str) -> "TierPolicy | None":
        policies = {p.role: p for p in cls.objects.filter(tier=tier, role__in=[role, ""])}
        return policies.get(role) or policies.get("")
