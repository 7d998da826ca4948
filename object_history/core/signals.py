"""Django model signal receivers feeding the history engine.

pre_save reads the stored row and stages the detected changes under a key kept
on the instance; post_save queues what that same save staged (or snapshots a
new object) and flushes the active unit unless it is a deferred
``history_batch``.
"""
import datetime
import logging

from django.conf import settings
from django.core.exceptions import ValidationError
from django.db import DatabaseError, models
from django.db.models.fields.files import FieldFile
from django.db.models.signals import post_save, pre_save
from django.utils import timezone

from .capture import HistoryEngine
from .conf import history_enabled
from .registry import history, object_type_for
from .units import current_unit

logger = logging.getLogger(__name__)

STAGE_ATTR = "_history_stage_key"

_engine = None


def get_engine() -> HistoryEngine:
    global _engine
    if _engine is None:
        _engine = HistoryEngine.from_settings(policy=history)
    return _engine


def set_engine(engine: HistoryEngine | None):
    global _engine
    _engine = engine


def _current_value(instance, descriptor):
    value = getattr(instance, descriptor.attname)
    if isinstance(value, FieldFile):
        return value.name
    return value


def _coerce(model, descriptor, value):
    field = model._meta.get_field(descriptor.name)
    try:
        value = field.to_python(value)
    except ValidationError:
        return value
    if (
        isinstance(field, models.DateTimeField)
        and isinstance(value, datetime.datetime)
        and settings.USE_TZ
        and timezone.is_naive(value)
    ):
        value = timezone.make_aware(value)
    return value


def _release_stage(instance):
    """Drop a detection left staged by an earlier save of ``instance`` that never completed."""
    key = instance.__dict__.pop(STAGE_ATTR, None)
    if key is not None:
        current_unit().stage(key, None)


def stored_changes(sender, instance, fields, using=None) -> dict | None:
    """``{field: (old, new)}`` for fields whose stored value differs, None if no row exists."""
    stored = (
        sender._base_manager.using(using)
        .filter(pk=instance.pk)
        .values(*[f.attname for f in fields])
        .first()
    )
    if stored is None:
        return None
    changes = {}
    for descriptor in fields:
        old = stored[descriptor.attname]
        new = _coerce(sender, descriptor, _current_value(instance, descriptor))
        if old != new:
            changes[descriptor.name] = (old, new)
    return changes


def capture_update(sender, instance, raw=False, using=None, update_fields=None, **kwargs):
    _release_stage(instance)
    if raw or instance.pk is None or not history_enabled():
        return
    object_type = object_type_for(sender)
    fields = history.auditable_fields(object_type)
    if not fields:
        return
    deferred = instance.get_deferred_fields()
    fields = [f for f in fields if f.attname not in deferred]
    if update_fields is not None:
        fields = [f for f in fields if f.name in update_fields or f.attname in update_fields]
    if not fields:
        return

    try:
        changes = stored_changes(sender, instance, fields, using=using)
        record = get_engine().detect(object_type, instance.pk, changes) if changes else None
    except DatabaseError:
        raise
    except Exception:
        logger.exception("Change detection failed for %s#%s", object_type, instance.pk)
        record = None
    if record is not None:
        key = object()
        current_unit().stage(key, record)
        instance.__dict__[STAGE_ATTR] = key


def capture_save(sender, instance, created, raw=False, using=None, **kwargs):
    key = instance.__dict__.pop(STAGE_ATTR, None)
    unit = current_unit()
    record = unit.unstage(key) if key is not None else None
    if raw or not history_enabled() or not history.is_registered(sender):
        return
    object_type = object_type_for(sender)

    if created:
        fields = history.auditable_fields(object_type)
        try:
            values = {f.name: _coerce(sender, f, _current_value(instance, f)) for f in fields}
            record = get_engine().snapshot(object_type, instance.pk, values)
        except Exception:
            logger.exception("Creation snapshot failed for %s#%s", object_type, instance.pk)
            record = None

    if record is not None:
        if unit.deferred:
            unit.add_on_commit(record, using=using)
        else:
            unit.add(record)
    if not unit.deferred:
        unit.flush()


def connect():
    pre_save.connect(capture_update, dispatch_uid="object_history_capture_update")
    post_save.connect(capture_save, dispatch_uid="object_history_capture_save")


def disconnect():
    pre_save.disconnect(dispatch_uid="object_history_capture_update")
    post_save.disconnect(dispatch_uid="object_history_capture_save")
