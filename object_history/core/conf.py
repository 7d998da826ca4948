from django.conf import settings

DEFAULTS = {
    "ENABLED": True,
    "MODELS": {},
    "ACTOR_RESOLVER": "object_history.core.actors.request_user_actor",
    "WRITER": "object_history.core.units.DatabaseHistoryWriter",
    "ADMIN_GROUP": "History Admin",
}


def history_settings() -> dict:
    """OBJECT_HISTORY from Django settings, merged over the defaults."""
    configured = getattr(settings, "OBJECT_HISTORY", None) or {}
    merged = dict(DEFAULTS)
    merged.update(configured)
    return merged


def history_enabled() -> bool:
    return bool(history_settings()["ENABLED"])
