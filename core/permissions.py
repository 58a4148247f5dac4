from rest_framework import permissions

REVIEW_PERMISSION = "compliance_app.review_compliancerecord"


class ReadOnlyOrAdmin(permissions.BasePermission):
    """
    Custom permission:
    - Any signed-in user can read (GET, HEAD, OPTIONS)
    - Only staff/admin users can write (POST, PUT, PATCH, DELETE)
    """
    def has_permission(self, request, view):
        if not (request.user and request.user.is_authenticated):
            return False
        if request.method in permissions.SAFE_METHODS:
            return True
        return bool(request.user.is_staff)


class IsReviewer(permissions.BasePermission):
    """Users holding the review permission (directly or through a group)."""
    message = "Reviewer permission required."

    def has_permission(self, request, view):
        user = request.user
        return bool(user and user.is_authenticated and user.has_perm(REVIEW_PERMISSION))


class IsStaff(permissions.BasePermission):
    message = "Administrator access required."

    def has_permission(self, request, view):
        return bool(request.user and request.user.is_authenticated and request.user.is_staff)
