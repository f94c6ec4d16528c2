from django.apps import AppConfig


class QuotasConfig(AppConfig):
    """Configuration for the Quotas app."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "alfie.quotas"
    label = "quotas"
    verbose_name = "Quotas"
