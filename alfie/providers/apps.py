from django.apps import AppConfig


class ProvidersConfig(AppConfig):
    """Configuration for the Providers app."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "alfie.providers"
    label = "providers"
    verbose_name = "Generation Providers"
