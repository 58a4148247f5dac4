from rest_framework import serializers

from .models import RequirementDefinition, TierPolicy, ROLE_CODES, TIER_CODES
from .rules import ValidationRules


class RequirementDefinitionSerializer(serializers.ModelSerializer):
    class Meta:
        model = RequirementDefinition
        fields = (
            "id", "code", "name", "description", "kind", "requirement_type",
            "applicable_roles", "applicable_tiers", "points_value", "validation_rules",
            "display_order", "due_days", "is_active", "published_at",
        )
        read_only_fields = ("published_at",)

    def validate_applicable_roles(self, roles):
        if not isinstance(roles, list) or any(r not in ROLE_CODES for r in roles):
            raise serializers.ValidationError(f"Use role codes from {sorted(ROLE_CODES)}.")
        return roles

    def validate_applicable_tiers(self, tiers):
        if not isinstance(tiers, list) or any(t not in TIER_CODES for t in tiers):
            raise serializers.ValidationError(f"Use tier codes from {sorted(TIER_CODES)}.")
        return tiers

    def validate_validation_rules(self, rules):
        try:
            ValidationRules.from_dict(rules)
        except ValueError as e:
            raise serializers.ValidationError(str(e))
        return rules or {}

    def validate(self, attrs):
        instance = self.instance
        if instance is not None and instance.is_published:
            changed = [
                name for name in RequirementDefinition.RULE_FIELDS
                if name in attrs and attrs[name] != getattr(instance, name)
            ]
            if changed:
                raise serializers.ValidationError(
                    f"Published requirements are immutable; cannot change {', '.join(changed)}."
                )
        return attrs


class TierPolicySerializer(serializers.ModelSerializer):
    class Meta:
        model = TierPolicy
        fields = ("id", "tier", "role", "next_tier", "min_completion_percentage", "min_points")
