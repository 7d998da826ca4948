"""Which models and fields are tracked.

Markers are declared explicitly, either with the ``history.register`` class
decorator or through ``OBJECT_HISTORY["MODELS"]`` in settings. Field
descriptors are built lazily, once per model, because ``_meta`` is only
complete after the app registry is ready.
"""
import logging
from dataclasses import dataclass

from django.apps import apps
from django.db import models

logger = logging.getLogger(__name__)

INTEGER_PK_TYPES = (models.AutoField, models.BigAutoField, models.SmallAutoField, models.IntegerField)


@dataclass(frozen=True)
class FieldDescriptor:
    name: str
    attname: str
    include: bool = False
    exclude: bool = False

    def is_auditable(self, audit_all: bool) -> bool:
        if self.exclude:
            return False
        if self.include:
            return True
        return audit_all


@dataclass(frozen=True)
class ModelMarkers:
    audit_all: bool = False
    include: frozenset = frozenset()
    exclude: frozenset = frozenset()


@dataclass(frozen=True)
class ModelDescriptor:
    object_type: str
    audit_all: bool
    fields: tuple

    def field(self, name):
        for descriptor in self.fields:
            if descriptor.name == name:
                return descriptor
        return None

    @property
    def auditable_fields(self) -> tuple:
        return tuple(f for f in self.fields if f.is_auditable(self.audit_all))


def object_type_for(model) -> str:
    return model._meta.label


class HistoryRegistry:
    def __init__(self):
        self._markers: dict[str, ModelMarkers] = {}
        self._descriptors: dict[str, ModelDescriptor | None] = {}

    def register(self, audit_all: bool = False, include=(), exclude=()):
        """Class decorator marking a model for history capture."""

        def decorator(model):
            self.register_model(model, audit_all=audit_all, include=include, exclude=exclude)
            return model

        return decorator

    def register_model(self, model, audit_all: bool = False, include=(), exclude=()):
        label = object_type_for(model)
        self._markers[label] = ModelMarkers(
            audit_all=audit_all,
            include=frozenset(include),
            exclude=frozenset(exclude),
        )
        self._descriptors.pop(label, None)
        logger.debug("Registered %s for history (audit_all=%s)", label, audit_all)

    def register_from_settings(self, config: dict):
        for label, options in (config or {}).items():
            try:
                model = apps.get_model(label)
            except (LookupError, ValueError):
                logger.warning("OBJECT_HISTORY model %r is not installed, skipping", label)
                continue
            options = options or {}
            self.register_model(
                model,
                audit_all=options.get("audit_all", False),
                include=options.get("include", ()),
                exclude=options.get("exclude", ()),
            )

    def unregister(self, model):
        label = object_type_for(model) if not isinstance(model, str) else model
        self._markers.pop(label, None)
        self._descriptors.pop(label, None)

    def is_registered(self, model) -> bool:
        label = object_type_for(model) if not isinstance(model, str) else model
        return label in self._markers

    def descriptor(self, object_type: str) -> ModelDescriptor | None:
        if object_type in self._descriptors:
            return self._descriptors[object_type]
        markers = self._markers.get(object_type)
        if markers is None:
            return None
        descriptor = self._build(object_type, markers)
        self._descriptors[object_type] = descriptor
        return descriptor

    def _build(self, object_type, markers: ModelMarkers) -> ModelDescriptor | None:
        try:
            model = apps.get_model(object_type)
        except (LookupError, ValueError):
            logger.warning("History markers for unknown model %s ignored", object_type)
            return None

        pk = model._meta.pk
        if pk.is_relation:
            pk = pk.target_field
        if not isinstance(pk, INTEGER_PK_TYPES):
            logger.error("%s has a non-integer primary key and cannot be tracked", object_type)
            return None

        concrete = [f for f in model._meta.concrete_fields if not f.primary_key]
        names = {f.name for f in concrete}
        for marker in sorted((markers.include | markers.exclude) - names):
            logger.warning("History marker on %s.%s names no concrete field", object_type, marker)

        fields = tuple(
            FieldDescriptor(
                name=f.name,
                attname=f.attname,
                include=f.name in markers.include,
                exclude=f.name in markers.exclude,
            )
            for f in concrete
        )
        return ModelDescriptor(object_type=object_type, audit_all=markers.audit_all, fields=fields)

    def is_field_auditable(self, object_type: str, field_name: str) -> bool:
        descriptor = self.descriptor(object_type)
        if descriptor is None:
            return False
        field = descriptor.field(field_name)
        if field is None:
            return False
        return field.is_auditable(descriptor.audit_all)

    def auditable_fields(self, object_type: str) -> tuple:
        descriptor = self.descriptor(object_type)
        return descriptor.auditable_fields if descriptor else ()


history = HistoryRegistry()
register = history.register
