from django.apps import AppConfig


class AuditConfig(AppConfig):
    name = "object_history.audit"
    label = "audit"
    verbose_name = "Object history"
    default_auto_field = "django.db.models.BigAutoField"
