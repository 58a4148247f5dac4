# profiles/serializers.py
from rest_framework import serializers

from catalog.models import Tier
from .models import TierChange


class TierChangeSerializer(serializers.ModelSerializer):
    class Meta:
        model = TierChange
        fields = ("id", "old_tier", "new_tier", "changed_by", "reason", "requirements_affected", "created_at")


class TierChangeRequestSerializer(serializers.Serializer):
    user = serializers.IntegerField(required=False, help_text="Defaults to the signed-in user.")
    new_tier = serializers.ChoiceField(choices=Tier.choices)
    reason = serializers.CharField(required=False, allow_blank=True, default="")
