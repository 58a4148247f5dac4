# core/views.py
import logging

from django.db import DatabaseError, connection
from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import AllowAny
from rest_framework.response import Response
from drf_yasg.utils import swagger_auto_schema
from drf_yasg import openapi

log = logging.getLogger(__name__)

health_response = openapi.Response(
    description="Service is up",
    schema=openapi.Schema(
        type=openapi.TYPE_OBJECT,
        properties={
            "status": openapi.Schema(type=openapi.TYPE_STRING, example="ok"),
            "database": openapi.Schema(type=openapi.TYPE_BOOLEAN, example=True),
        },
        required=["status", "database"],
    ),
)


def database_ok() -> bool:
    try:
        with connection.cursor() as c:
            c.execute("SELECT 1")
            c.fetchone()
    except DatabaseError as e:
        log.error("health check: database unavailable: %s", e)
        return False
    return True


@swagger_auto_schema(method='get', responses={200: health_response, 503: health_response})
@api_view(['GET'])
@permission_classes([AllowAny])
def health_view(request):
    ok = database_ok()
    return Response(
        {"status": "ok" if ok else "degraded", "database": ok},
        status=status.HTTP_200_OK if ok else status.HTTP_503_SERVICE_UNAVAILABLE,
    )
