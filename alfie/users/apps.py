from django.apps import AppConfig


class UsersConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "alfie.users"
    label = "users"
    verbose_name = "Alfie Users"
