# compliance_app/filters.py
import django_filters
from django.contrib.auth import get_user_model

from .models import ComplianceRecord


class ComplianceRecordFilter(django_filters.FilterSet):
    requirement = django_filters.CharFilter(
        field_name="requirement__name",
        lookup_expr="icontains",
        label="Requirement contains",
        help_text="Case-insensitive substring match on the requirement name."
    )
    requirement_code = django_filters.CharFilter(field_name="requirement__code")
    requirement_type = django_filters.CharFilter(field_name="requirement__requirement_type")
    status = django_filters.MultipleChoiceFilter(
        choices=ComplianceRecord.Status.choices,
        label="Status",
        help_text="Repeat the parameter for multiple values, e.g. ?status=submitted&status=rejected."
    )
    updated_after = django_filters.IsoDateTimeFilter(
        field_name="updated_at",
        lookup_expr="gte",
        label="Updated after",
        help_text="ISO 8601 datetime (e.g. 2025-08-12T15:00:00Z)."
    )
    updated_before = django_filters.IsoDateTimeFilter(
        field_name="updated_at",
        lookup_expr="lte",
        label="Updated before",
        help_text="ISO 8601 datetime (e.g. 2025-08-12T23:59:59Z)."
    )
    user = django_filters.ModelChoiceFilter(
        queryset=get_user_model().objects.none(),
        label="Instructor",
        help_text="Filter by user ID (reviewers only)."
    )

    class Meta:
        model = ComplianceRecord
        fields = ["user", "status", "requirement"]

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        request = getattr(self, "request", None)
        if request and request.user.is_authenticated:
            users = get_user_model().objects.all()
            if not (request.user.is_staff or request.user.has_perm("compliance_app.review_compliancerecord")):
                users = users.filter(pk=request.user.pk)
            self.filters["user"].queryset = users
