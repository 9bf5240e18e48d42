from django.apps import AppConfig


class BulkDistancesConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "bulk_distances"
    verbose_name = "Bulk distances"
