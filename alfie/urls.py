"""
URL configuration for the Alfie backend.
"""

from django.http import JsonResponse
from django.urls import include, path


def healthcheck(request):
    return JsonResponse({"status": "ok", "service": "alfie-backend"})


urlpatterns = [
    path("health/", healthcheck, name="healthcheck"),
    path("api/jobs/", include("alfie.jobs.api.urls", namespace="jobs")),
    path("api/providers/", include("alfie.providers.api.urls", namespace="providers")),
    path(
        "api/brands/<str:brand_id>/quota",
        include("alfie.quotas.api.urls", namespace="quotas"),
    ),
]
