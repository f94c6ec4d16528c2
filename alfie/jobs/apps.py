"""
Jobs app configuration: queue, video pipeline, events.
"""

from django.apps import AppConfig


class JobsConfig(AppConfig):
    """Configuration for the Jobs app."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "alfie.jobs"
    label = "jobs"
    verbose_name = "Media Jobs"
