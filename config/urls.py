"""
URL configuration for the compliance service.
"""
from django.contrib import admin
from django.urls import path, include

# --- DRF / API ---
from rest_framework.authtoken.views import obtain_auth_token
from rest_framework import permissions
from drf_yasg.views import get_schema_view
from drf_yasg import openapi

from core.views import health_view
from profiles.views import me_view

schema_view = get_schema_view(
    openapi.Info(
        title="Instructor Compliance API",
        default_version="v1",
        description="Requirement catalog, evidence submission, review and tier progression.",
    ),
    public=True,
    permission_classes=[permissions.AllowAny],
)

urlpatterns = [
    # ---------- Admin ----------
    path("admin/", admin.site.urls),

    # ---------- API ----------
    path("api/", include("compliance_app.urls")),
    path("api/token/", obtain_auth_token),
    path("api/me/", me_view, name="me"),
    path("api/health/", health_view, name="health-check"),

    # ---------- API docs ----------
    path("swagger/", schema_view.with_ui("swagger", cache_timeout=0), name="schema-swagger-ui"),
    path("redoc/", schema_view.with_ui("redoc", cache_timeout=0), name="schema-redoc"),
]
