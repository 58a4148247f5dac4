from django.apps import AppConfig


class ComplianceAppConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "compliance_app"
    verbose_name = "Compliance records"

    def ready(self):
        from .events import record_activity, transition

        transition.connect(record_activity, dispatch_uid="compliance_app.record_activity")
