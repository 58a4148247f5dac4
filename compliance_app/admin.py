from django.contrib import admin, messages

from core.errors import ComplianceError
from . import services
from .models import ComplianceActivity, ComplianceRecord, Submission


class SubmissionInline(admin.TabularInline):
    model = Submission
    extra = 0
    can_delete = False
    fields = ("sequence", "submitted_at", "submitted_by", "decision", "reviewer", "review_notes", "decided_at")
    readonly_fields = fields

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(ComplianceRecord)
class ComplianceRecordAdmin(admin.ModelAdmin):
    list_display = ("requirement", "user", "status", "submission_count", "due_at", "updated_at")
    search_fields = ("requirement__name", "requirement__code", "user__username")
    list_filter = ("status", "requirement__requirement_type", "updated_at")
    list_select_related = ("requirement", "user")
    inlines = [SubmissionInline]
    actions = ["mark_not_applicable"]

    # Status only moves through the workflow (API or the actions below).
    readonly_fields = (
        "user", "requirement", "status", "submission_data", "submitted_at",
        "reviewer", "review_notes", "reviewed_at", "override_reason",
        "last_checked_at", "submission_count", "version", "created_at", "updated_at",
    )

    def has_add_permission(self, request):
        return False

    def has_delete_permission(self, request, obj=None):
        return False

    @admin.action(description="Mark selected requirements as not applicable")
    def mark_not_applicable(self, request, queryset):
        done = 0
        for rec in queryset:
            try:
                services.override_not_applicable(
                    rec.user_id, rec.requirement_id, request.user.pk, "Marked not applicable in admin",
                )
                done += 1
            except ComplianceError as e:
                self.message_user(request, f"{rec}: {e.message}", level=messages.WARNING)
        if done:
            self.message_user(request, f"{done} record(s) marked not applicable.")


@admin.register(ComplianceActivity)
class ComplianceActivityAdmin(admin.ModelAdmin):
    list_display = ("action", "user", "requirement", "actor", "created_at")
    list_filter = ("action", "created_at")
    search_fields = ("user__username", "requirement__code")

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False
