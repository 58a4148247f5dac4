from __future__ import annotations

from django.conf import settings
from django.db import models
from django.utils import timezone

from catalog.models import Role, Tier


class InstructorProfile(models.Model):
    user = models.OneToOneField(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="instructor_profile",
    )
    role = models.CharField(max_length=4, choices=Role.choices, default=Role.IT)
    tier = models.CharField(max_length=20, choices=Tier.choices, default=Tier.BASIC)
    display_name = models.CharField(max_length=255, blank=True)
    created_at = models.DateTimeField(default=timezone.now, editable=False)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self) -> str:  # pragma: no cover
        return f"{self.name} ({self.role}/{self.tier})"

    @property
    def name(self) -> str:
        return self.display_name or self.user.get_full_name() or self.user.get_username()


class TierChange(models.Model):
    """Append-only history of tier moves."""
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="tier_changes",
    )
    old_tier = models.CharField(max_length=20, choices=Tier.choices)
    new_tier = models.CharField(max_length=20, choices=Tier.choices)
    changed_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
        related_name="+",
    )
    reason = models.TextField(blank=True, default="")
    requirements_affected = models.PositiveIntegerField(default=0)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ("-created_at", "-id")

    def __str__(self) -> str:  # pragma: no cover
        return f"{self.user} {self.old_tier} -> {self.new_tier}"
