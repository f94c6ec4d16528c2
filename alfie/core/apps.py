"""
Django app configuration for Alfie core.
"""

from django.apps import AppConfig


class CoreConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "alfie.core"
    label = "core"
    verbose_name = "Alfie Core"
