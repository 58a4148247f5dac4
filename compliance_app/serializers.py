from rest_framework import serializers

from .models import ComplianceRecord, Submission


class SubmissionSerializer(serializers.ModelSerializer):
    class Meta:
        model = Submission
        fields = (
            "id", "sequence", "payload", "submitted_at", "submitted_by",
            "decision", "reviewer", "review_notes", "decided_at",
        )
        read_only_fields = fields


class ComplianceRecordSerializer(serializers.ModelSerializer):
    requirement_code = serializers.CharField(source="requirement.code", read_only=True)
    requirement_name = serializers.CharField(source="requirement.name", read_only=True)
    status_display = serializers.CharField(source="get_status_display", read_only=True)
    current_submission = serializers.SerializerMethodField()

    class Meta:
        model = ComplianceRecord
        fields = (
            "id", "user", "requirement", "requirement_code", "requirement_name",
            "status", "status_display", "submission_data", "submitted_at",
            "reviewer", "review_notes", "reviewed_at", "override_reason",
            "due_at", "last_checked_at", "submission_count", "current_submission",
            "updated_at",
        )
        # records change only through the workflow
        read_only_fields = fields

    def get_current_submission(self, obj):
        if not obj.submission_count:
            return None
        sub = obj.submissions.filter(sequence=obj.submission_count).first()
        return sub.pk if sub else None


class SubmitSerializer(serializers.Serializer):
    """Body of POST /requirements/{id}/submit/: the kind-specific evidence payload."""
    payload = serializers.DictField(help_text="Form values, file list or external-link evidence.")


class ReviewSerializer(serializers.Serializer):
    decision = serializers.CharField(help_text="'approve' or 'reject'.")
    notes = serializers.CharField(required=False, allow_blank=True, default="")


class OverrideSerializer(serializers.Serializer):
    reason = serializers.CharField(required=False, allow_blank=True, default="")
