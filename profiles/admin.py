from django.contrib import admin

from .models import InstructorProfile, TierChange


@admin.register(InstructorProfile)
class InstructorProfileAdmin(admin.ModelAdmin):
    list_display = ("id", "user", "display_name", "role", "tier")
    list_filter = ("role", "tier")
    search_fields = ("user__username", "user__email", "display_name")
    # tier moves go through the engine so they are gated and recorded
    readonly_fields = ("tier", "created_at")


@admin.register(TierChange)
class TierChangeAdmin(admin.ModelAdmin):
    list_display = ("id", "user", "old_tier", "new_tier", "changed_by", "created_at")
    list_filter = ("old_tier", "new_tier")
    search_fields = ("user__username", "reason")

    # history is append-only
    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False
