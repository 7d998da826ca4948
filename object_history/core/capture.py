import logging

from django.utils.module_loading import import_string

from .actors import resolve_actor
from .conf import history_settings
from .normalizer import ValueKind, classify, normalize_value
from .registry import history
from .units import FieldDelta, PendingRecord

logger = logging.getLogger(__name__)


def build_record(object_type, object_id, deltas, actor_resolver=None) -> PendingRecord | None:
    """Pending record stamped with the current actor, or None without deltas."""
    if not deltas:
        return None
    record = PendingRecord(object_type=object_type, object_id=object_id, deltas=list(deltas))
    actor = resolve_actor(actor_resolver)
    if actor is not None:
        if actor.is_privileged:
            record.admin_id = actor.identifier
        else:
            record.user_id = actor.identifier
    return record


class ChangeDetector:
    def __init__(self, policy=None, actor_resolver=None):
        self.policy = policy or history
        self.actor_resolver = actor_resolver

    def detect(self, object_type: str, object_id: int, changed_field_values: dict) -> PendingRecord | None:
        """Deltas for the audited fields in ``changed_field_values``.

        ``changed_field_values`` maps field name to an ``(old, new)`` pair.
        Pairs that normalize to the same text are not changes.
        """
        deltas = []
        for field in self.policy.auditable_fields(object_type):
            if field.name not in changed_field_values:
                continue
            old, new = changed_field_values[field.name]
            old_value = normalize_value(classify(old))
            new_value = normalize_value(classify(new))
            if old_value == new_value:
                continue
            deltas.append(FieldDelta(field.name, old_value, new_value))
        return build_record(object_type, object_id, deltas, self.actor_resolver)


class CreationSnapshotter:
    def __init__(self, policy=None, actor_resolver=None):
        self.policy = policy or history
        self.actor_resolver = actor_resolver

    def snapshot(self, object_type: str, object_id: int, current_field_values: dict) -> PendingRecord | None:
        deltas = []
        for field in self.policy.auditable_fields(object_type):
            value = classify(current_field_values.get(field.name))
            if value.kind is ValueKind.ABSENT:
                continue
            # a reference without an id contributes nothing on creation
            if value.kind is ValueKind.REFERENCE and value.payload is None:
                continue
            new_value = normalize_value(value)
            if new_value is None:
                continue
            deltas.append(FieldDelta(field.name, None, new_value))
        return build_record(object_type, object_id, deltas, self.actor_resolver)


class HistoryEngine:
    """Detector and snapshotter sharing one policy and one actor resolver."""

    def __init__(self, policy=None, actor_resolver=None):
        self.policy = policy or history
        self.actor_resolver = actor_resolver
        self.detector = ChangeDetector(self.policy, actor_resolver)
        self.snapshotter = CreationSnapshotter(self.policy, actor_resolver)

    @classmethod
    def from_settings(cls, policy=None):
        path = history_settings()["ACTOR_RESOLVER"]
        resolver = import_string(path) if path else None
        return cls(policy=policy, actor_resolver=resolver)

    def detect(self, object_type, object_id, changed_field_values):
        return self.detector.detect(object_type, object_id, changed_field_values)

    def snapshot(self, object_type, object_id, current_field_values):
        return self.snapshotter.snapshot(object_type, object_id, current_field_values)
