"""
Job API URL routing (mounted under /api/jobs/).
"""

from django.urls import path

from alfie.jobs.api import views

app_name = "jobs"

urlpatterns = [
    path("enqueue", views.enqueue, name="enqueue"),
    path("unblock", views.unblock, name="unblock"),
    path("monitor", views.monitor, name="monitor"),
    path("<str:job_id>/cancel", views.cancel, name="cancel"),
    path("<str:job_id>/progress", views.progress, name="progress"),
    path("<str:job_id>/steps/<str:step_id>/retry", views.retry_step, name="retry-step"),
]
