"""
Quota API URL routing (mounted under /api/brands/<brand_id>/quota).
"""

from django.urls import path

from alfie.quotas.api import views

app_name = "quotas"

urlpatterns = [
    path("", views.quota_status, name="quota-status"),
]
