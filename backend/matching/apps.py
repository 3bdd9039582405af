from django.apps import AppConfig


class MatchingAppConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "matching"
    verbose_name = "Driver matching"
