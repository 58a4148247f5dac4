# compliance_app/urls.py
from rest_framework.routers import DefaultRouter

from . import views

router = DefaultRouter()
router.register(r"requirements", views.RequirementDefinitionViewSet, basename="requirement")
router.register(r"records", views.ComplianceRecordViewSet, basename="record")
router.register(r"submissions", views.SubmissionViewSet, basename="submission")
router.register(r"progress", views.ProgressViewSet, basename="progress")

urlpatterns = router.urls
