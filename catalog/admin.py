from django import forms
from django.contrib import admin

from .models import RequirementDefinition, TierPolicy


class RequirementDefinitionAdminForm(forms.ModelForm):
    class Meta:
        model = RequirementDefinition
        fields = "__all__"
        widgets = {
            "description": forms.Textarea(
                attrs={"rows": 3, "cols": 80, "style": "min-width: 40em;"}
            ),
        }


@admin.register(RequirementDefinition)
class RequirementDefinitionAdmin(admin.ModelAdmin):
    form = RequirementDefinitionAdminForm
    list_display = ("code", "name", "kind", "requirement_type", "points_value", "is_active", "published_at")
    search_fields = ("code", "name")
    list_filter = ("kind", "requirement_type", "is_active")
    ordering = ("display_order", "id")
    actions = ["publish", "deactivate"]

    def get_readonly_fields(self, request, obj=None):
        readonly = ["published_at", "created_at", "updated_at"]
        if obj and obj.is_published:
            readonly += list(RequirementDefinition.RULE_FIELDS)
        return readonly

    # never deleted, only deactivated
    def has_delete_permission(self, request, obj=None):
        return False

    @admin.action(description="Publish selected requirements")
    def publish(self, request, queryset):
        for req in queryset:
            req.publish()

    @admin.action(description="Deactivate selected requirements")
    def deactivate(self, request, queryset):
        for req in queryset:
            req.deactivate()


@admin.register(TierPolicy)
class TierPolicyAdmin(admin.ModelAdmin):
    list_display = ("tier", "role", "next_tier", "min_completion_percentage", "min_points")
    list_filter = ("tier", "role")
