# catalog/filters.py
import django_filters

from .models import RequirementDefinition, Role, Tier


class RequirementDefinitionFilter(django_filters.FilterSet):
    name = django_filters.CharFilter(
        field_name="name",
        lookup_expr="icontains",
        label="Name contains",
        help_text="Case-insensitive substring match on the requirement name."
    )
    kind = django_filters.MultipleChoiceFilter(
        choices=RequirementDefinition.Kind.choices,
        label="Kind",
        help_text="Repeat the parameter for multiple values, e.g. ?kind=form&kind=file_upload."
    )
    requirement_type = django_filters.MultipleChoiceFilter(
        choices=RequirementDefinition.RequirementType.choices,
        label="Requirement type",
    )
    role = django_filters.ChoiceFilter(
        choices=Role.choices,
        method="filter_role",
        label="Applies to role",
    )
    tier = django_filters.ChoiceFilter(
        choices=Tier.choices,
        method="filter_tier",
        label="Applies to tier",
        help_text="Requirements without a tier restriction are included."
    )
    is_active = django_filters.BooleanFilter(field_name="is_active")

    class Meta:
        model = RequirementDefinition
        fields = ["name", "kind", "requirement_type", "is_active"]

    # Role/tier sets live in JSON columns; the catalog is small, so match in Python
    # rather than relying on backend-specific JSON lookups.
    def filter_role(self, queryset, name, value):
        ids = [r.pk for r in queryset if value in (r.applicable_roles or [])]
        return queryset.filter(pk__in=ids)

    def filter_tier(self, queryset, name, value):
        ids = [r.pk for r in queryset if not r.applicable_tiers or value in r.applicable_tiers]
        return queryset.filter(pk__in=ids)
