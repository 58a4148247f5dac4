# profiles/views.py
from rest_framework import decorators, response, permissions as drf_permissions

from .models import InstructorProfile, TierChange
from .serializers import TierChangeSerializer


# ======================================================================================
# API: /api/me  (current user + instructor profile)
# ======================================================================================
@decorators.api_view(["GET"])
@decorators.permission_classes([drf_permissions.IsAuthenticated])
def me_view(request):
    user = request.user
    profile = InstructorProfile.objects.filter(user=user).first()
    history = TierChange.objects.filter(user=user)[:10]
    return response.Response(
        {
            "id": user.id,
            "username": getattr(user, "username", None),
            "email": getattr(user, "email", None),
            "is_reviewer": user.has_perm("compliance_app.review_compliancerecord"),
            "profile": (
                {
                    "role": profile.role,
                    "tier": profile.tier,
                    "display_name": profile.name,
                }
                if profile else None
            ),
            "tier_history": TierChangeSerializer(history, many=True).data,
        }
    )
