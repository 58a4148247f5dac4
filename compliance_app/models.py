from __future__ import annotations

from django.conf import settings
from django.db import models

from catalog.models import RequirementDefinition


class ComplianceRecord(models.Model):
    """One per (user, requirement). Never deleted; kept for audit."""

    class Status(models.TextChoices):
        PENDING = "pending", "Pending"
        SUBMITTED = "submitted", "Submitted"
        APPROVED = "approved", "Approved"
        REJECTED = "rejected", "Needs revision"
        NOT_APPLICABLE = "not_applicable", "Not applicable"

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="compliance_records",
    )
    requirement = models.ForeignKey(
        RequirementDefinition,
        on_delete=models.PROTECT,
        related_name="records",
    )
    status = models.CharField(max_length=20, choices=Status.choices, default=Status.PENDING)
    submission_data = models.JSONField(default=dict, blank=True)
    submitted_at = models.DateTimeField(null=True, blank=True)

    reviewer = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
        related_name="reviewed_compliance_records",
    )
    review_notes = models.TextField(blank=True, default="")
    reviewed_at = models.DateTimeField(null=True, blank=True)
    override_reason = models.TextField(blank=True, default="")

    due_at = models.DateTimeField(null=True, blank=True)
    last_checked_at = models.DateTimeField(null=True, blank=True)
    submission_count = models.PositiveIntegerField(default=0)
    # bumped on every write; writers compare-and-swap on it
    version = models.PositiveIntegerField(default=0)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        unique_together = ("user", "requirement")
        ordering = ("-updated_at", "-id")
        permissions = [
            ("review_compliancerecord", "Can approve or reject compliance submissions"),
        ]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(status__in=["pending", "submitted", "approved", "rejected", "not_applicable"]),
                name="compliance_record_status_valid",
            ),
        ]

    def __str__(self):
        return f"{self.user} - {self.requirement} ({self.status})"

    @property
    def is_complete(self) -> bool:
        return self.status == self.Status.APPROVED


class Submission(models.Model):
    """Append-only evidence history; the record points at the latest by sequence."""

    class Decision(models.TextChoices):
        NONE = "", "Awaiting review"
        APPROVED = "approved", "Approved"
        REJECTED = "rejected", "Rejected"

    record = models.ForeignKey(ComplianceRecord, on_delete=models.PROTECT, related_name="submissions")
    sequence = models.PositiveIntegerField()
    payload = models.JSONField(default=dict)
    submitted_at = models.DateTimeField()
    submitted_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
        related_name="compliance_submissions",
    )
    decision = models.CharField(max_length=20, choices=Decision.choices, blank=True, default="")
    reviewer = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
        related_name="+",
    )
    review_notes = models.TextField(blank=True, default="")
    decided_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        unique_together = ("record", "sequence")
        ordering = ("record", "sequence")

    def __str__(self):
        return f"Submission #{self.sequence} for {self.record_id}"

    @property
    def is_current(self) -> bool:
        return self.sequence == self.record.submission_count


class ComplianceActivity(models.Model):
    """Audit trail of workflow events."""
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="compliance_activity",
    )
    action = models.CharField(max_length=50)
    requirement = models.ForeignKey(
        RequirementDefinition,
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
        related_name="+",
    )
    actor = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
        related_name="+",
    )
    metadata = models.JSONField(default=dict, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ("-created_at", "-id")
        verbose_name_plural = "compliance activity"

    def __str__(self):
        return f"{self.action} ({self.user})"
