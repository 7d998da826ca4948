from django.apps import AppConfig


class HistoryCoreConfig(AppConfig):
    name = "object_history.core"
    label = "history_core"
    verbose_name = "Object history engine"

    def ready(self):
        from . import signals
        from .conf import history_settings
        from .registry import history

        history.register_from_settings(history_settings()["MODELS"])
        signals.connect()
