# compliance_app/views.py
from __future__ import annotations

import logging

from rest_framework import filters, permissions, status, viewsets
from rest_framework.decorators import action
from rest_framework.response import Response
from django_filters.rest_framework import DjangoFilterBackend
from drf_yasg import openapi
from drf_yasg.utils import swagger_auto_schema

from catalog.filters import RequirementDefinitionFilter
from catalog.models import RequirementDefinition
from catalog.serializers import RequirementDefinitionSerializer
from core.errors import ComplianceError, NotPermitted
from core.permissions import IsReviewer, IsStaff, ReadOnlyOrAdmin, REVIEW_PERMISSION
from profiles.serializers import TierChangeRequestSerializer, TierChangeSerializer

from . import services
from .report import progress_report
from .filters import ComplianceRecordFilter
from .models import ComplianceRecord, Submission
from .serializers import (
    ComplianceRecordSerializer,
    OverrideSerializer,
    ReviewSerializer,
    SubmissionSerializer,
    SubmitSerializer,
)

log = logging.getLogger(__name__)


# --------------------------------------------------------------------------------------
# Helpers
# --------------------------------------------------------------------------------------
def _error(exc: ComplianceError) -> Response:
    """Map an engine error to its HTTP response."""
    if exc.status_code >= 500:
        log.error("compliance request failed: %s", exc, exc_info=exc)
    return Response(exc.as_dict(), status=exc.status_code)


def _is_reviewer(user) -> bool:
    return bool(user and user.is_authenticated and user.has_perm(REVIEW_PERMISSION))


def _target_user_id(request):
    """
    `?user=<id>` lets reviewers and staff look at someone else; everyone else
    only ever sees themselves.
    """
    requested = request.query_params.get("user")
    if requested and (_is_reviewer(request.user) or request.user.is_staff):
        return requested
    return request.user.id


error_schema = openapi.Schema(
    type=openapi.TYPE_OBJECT,
    properties={
        "code": openapi.Schema(type=openapi.TYPE_STRING),
        "detail": openapi.Schema(type=openapi.TYPE_STRING),
        "errors": openapi.Schema(type=openapi.TYPE_ARRAY, items=openapi.Schema(type=openapi.TYPE_OBJECT)),
    },
)
user_param = openapi.Parameter(
    "user", openapi.IN_QUERY, type=openapi.TYPE_INTEGER,
    description="Another user's id (reviewers and staff only).",
)


# --------------------------------------------------------------------------------------
# Requirements catalog
# --------------------------------------------------------------------------------------
class RequirementDefinitionViewSet(viewsets.ModelViewSet):
    """
    The requirement catalog. Everyone signed in can read it; only staff can
    edit. Published requirements keep their rules; deleting deactivates.
    """
    serializer_class = RequirementDefinitionSerializer
    permission_classes = [ReadOnlyOrAdmin]
    queryset = RequirementDefinition.objects.none()  # for schema generation

    filter_backends = [DjangoFilterBackend, filters.SearchFilter, filters.OrderingFilter]
    filterset_class = RequirementDefinitionFilter
    search_fields = ["name", "code", "description"]
    ordering_fields = ["display_order", "name", "points_value", "id"]
    ordering = ["display_order", "id"]

    def get_queryset(self):
        if getattr(self, "swagger_fake_view", False):
            return RequirementDefinition.objects.none()
        qs = RequirementDefinition.objects.all()
        return qs if self.request.user.is_staff else qs.active()

    def perform_destroy(self, instance):
        instance.deactivate()
        log.info("requirement deactivated code=%s by=%s", instance.code, self.request.user.pk)

    @swagger_auto_schema(
        operation_summary="Requirements that apply to the signed-in instructor",
        responses={200: RequirementDefinitionSerializer(many=True), 404: error_schema},
    )
    @action(detail=False, methods=["get"], permission_classes=[permissions.IsAuthenticated])
    def applicable(self, request):
        try:
            reqs = services.list_applicable_requirements(request.user.id)
        except ComplianceError as e:
            return _error(e)
        return Response(self.get_serializer(reqs, many=True).data)

    @swagger_auto_schema(
        operation_summary="Submit evidence for a requirement",
        request_body=SubmitSerializer,
        responses={201: ComplianceRecordSerializer, 400: error_schema, 404: error_schema, 409: error_schema},
    )
    @action(detail=True, methods=["post"], permission_classes=[permissions.IsAuthenticated])
    def submit(self, request, pk=None):
        body = SubmitSerializer(data=request.data)
        body.is_valid(raise_exception=True)
        try:
            record = services.submit_requirement(request.user.id, pk, body.validated_data["payload"])
        except ComplianceError as e:
            return _error(e)
        return Response(ComplianceRecordSerializer(record).data, status=status.HTTP_201_CREATED)


# --------------------------------------------------------------------------------------
# Compliance records
# --------------------------------------------------------------------------------------
class ComplianceRecordViewSet(viewsets.ReadOnlyModelViewSet):
    """
    Compliance records. Instructors see their own; reviewers see everyone's.
    Records change only through submit/review/override.
    """
    serializer_class = ComplianceRecordSerializer
    permission_classes = [permissions.IsAuthenticated]
    queryset = ComplianceRecord.objects.none()  # for schema generation

    filter_backends = [DjangoFilterBackend, filters.SearchFilter, filters.OrderingFilter]
    filterset_class = ComplianceRecordFilter
    search_fields = ["requirement__name", "requirement__code", "user__username"]
    ordering_fields = ["updated_at", "due_at", "status", "id"]
    ordering = ["-updated_at"]

    def get_queryset(self):
        # drf-yasg sets this during schema generation
        if getattr(self, "swagger_fake_view", False):
            return ComplianceRecord.objects.none()

        user = getattr(self.request, "user", None)
        if not user or not user.is_authenticated:
            return ComplianceRecord.objects.none()

        qs = ComplianceRecord.objects.select_related("requirement", "user")
        return qs if _is_reviewer(user) or user.is_staff else qs.filter(user=user)

    @swagger_auto_schema(operation_summary="List compliance records")
    def list(self, request, *args, **kwargs):
        return super().list(request, *args, **kwargs)

    @swagger_auto_schema(
        operation_summary="Submission history of a record",
        responses={200: SubmissionSerializer(many=True)},
    )
    @action(detail=True, methods=["get"])
    def submissions(self, request, pk=None):
        record = self.get_object()
        return Response(SubmissionSerializer(record.submissions.order_by("sequence"), many=True).data)

    @swagger_auto_schema(
        operation_summary="Mark a requirement as not applicable for this instructor",
        request_body=OverrideSerializer,
        responses={200: ComplianceRecordSerializer, 403: error_schema, 404: error_schema, 409: error_schema},
    )
    @action(
        detail=True,
        methods=["post"],
        url_path="not-applicable",
        permission_classes=[permissions.IsAuthenticated, IsStaff],
    )
    def not_applicable(self, request, pk=None):
        record = self.get_object()
        body = OverrideSerializer(data=request.data)
        body.is_valid(raise_exception=True)
        try:
            record = services.override_not_applicable(
                record.user_id, record.requirement_id, request.user.id, body.validated_data["reason"],
            )
        except ComplianceError as e:
            return _error(e)
        return Response(ComplianceRecordSerializer(record).data)


# --------------------------------------------------------------------------------------
# Review queue
# --------------------------------------------------------------------------------------
class SubmissionViewSet(viewsets.ReadOnlyModelViewSet):
    """Evidence submissions, newest last. Reviewers only."""
    serializer_class = SubmissionSerializer
    permission_classes = [permissions.IsAuthenticated, IsReviewer]
    queryset = Submission.objects.none()  # for schema generation

    filter_backends = [DjangoFilterBackend, filters.OrderingFilter]
    filterset_fields = ["decision", "record__user", "record__requirement"]
    ordering_fields = ["submitted_at", "id"]
    ordering = ["submitted_at"]

    def get_queryset(self):
        if getattr(self, "swagger_fake_view", False):
            return Submission.objects.none()
        return Submission.objects.select_related("record", "record__requirement")

    @swagger_auto_schema(
        operation_summary="Approve or reject a submission",
        request_body=ReviewSerializer,
        responses={
            200: ComplianceRecordSerializer,
            400: error_schema,
            404: error_schema,
            409: error_schema,
        },
    )
    @action(detail=True, methods=["post"])
    def review(self, request, pk=None):
        body = ReviewSerializer(data=request.data)
        body.is_valid(raise_exception=True)
        try:
            record = services.review_submission(
                pk, request.user.id, body.validated_data["decision"], body.validated_data["notes"],
            )
        except ComplianceError as e:
            return _error(e)
        return Response(ComplianceRecordSerializer(record).data)


# --------------------------------------------------------------------------------------
# Progress / advancement
# --------------------------------------------------------------------------------------
class ProgressViewSet(viewsets.ViewSet):
    """Progress summary, advancement check, JSON report and tier changes."""
    permission_classes = [permissions.IsAuthenticated]

    @swagger_auto_schema(
        operation_summary="Tier progress summary",
        manual_parameters=[user_param],
        responses={404: error_schema},
    )
    def list(self, request):
        try:
            info = services.get_progress(_target_user_id(request))
        except ComplianceError as e:
            return _error(e)
        return Response(info.as_dict())

    @swagger_auto_schema(
        operation_summary="Can this instructor request the next tier?",
        manual_parameters=[user_param],
        responses={404: error_schema},
    )
    @action(detail=False, methods=["get"])
    def advancement(self, request):
        try:
            decision = services.can_advance_tier(_target_user_id(request))
        except ComplianceError as e:
            return _error(e)
        return Response(decision.as_dict())

    @swagger_auto_schema(
        operation_summary="Progress report export (JSON)",
        manual_parameters=[user_param],
        responses={404: error_schema},
    )
    @action(detail=False, methods=["get"])
    def report(self, request):
        try:
            data = progress_report(_target_user_id(request))
        except ComplianceError as e:
            return _error(e)
        return Response(data)

    @swagger_auto_schema(
        operation_summary="Change tier",
        request_body=TierChangeRequestSerializer,
        responses={
            201: TierChangeSerializer, 400: error_schema, 403: error_schema, 404: error_schema, 409: error_schema,
        },
    )
    @action(detail=False, methods=["post"])
    def tier(self, request):
        body = TierChangeRequestSerializer(data=request.data)
        body.is_valid(raise_exception=True)
        user_id = body.validated_data.get("user") or request.user.id
        if user_id != request.user.id and not request.user.is_staff:
            return _error(NotPermitted("Only administrators can change another user's tier."))
        try:
            change = services.change_tier(
                user_id, body.validated_data["new_tier"], request.user.id, body.validated_data["reason"],
            )
        except ComplianceError as e:
            return _error(e)
        return Response(TierChangeSerializer(change).data, status=status.HTTP_201_CREATED)
