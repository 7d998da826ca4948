"""Canonical text form for field values.

Values coming from the host are first classified into a closed set of kinds
(see ``ValueKind``); normalization then dispatches on the kind only. Nothing
here raises: a value that cannot be rendered becomes ``None`` and the caller's
empty-pair check drops it.
"""
import datetime
import enum
import json
import logging
from decimal import Decimal
from email.utils import format_datetime, parsedate_to_datetime
from typing import Any, NamedTuple
from uuid import UUID

from django.core.serializers.json import DjangoJSONEncoder
from django.db import models
from django.utils.dateparse import parse_duration
from django.utils.duration import duration_iso_string

logger = logging.getLogger(__name__)

SCALAR_TYPES = (str, int, float, Decimal, bool, UUID, enum.Enum)
COMPOSITE_TYPES = (list, tuple, set, frozenset, dict)
TEMPORAL_TYPES = (datetime.datetime, datetime.date, datetime.time, datetime.timedelta)
BINARY_TYPES = (bytes, bytearray, memoryview)


class ValueKind(enum.Enum):
    ABSENT = "absent"
    TEMPORAL = "temporal"
    COMPOSITE = "composite"
    REFERENCE = "reference"
    SCALAR = "scalar"


class FieldValue(NamedTuple):
    kind: ValueKind
    payload: Any = None


ABSENT = FieldValue(ValueKind.ABSENT)


def reference_id(value):
    """Identifier exposed by a referenced object, or None."""
    if isinstance(value, models.Model):
        return value.pk
    for attr in ("pk", "id"):
        try:
            identifier = getattr(value, attr, None)
        except Exception:
            logger.debug("Reading %s from %r failed", attr, type(value), exc_info=True)
            continue
        if identifier is not None and not callable(identifier):
            return identifier
    return None


def classify(value) -> FieldValue:
    if value is None:
        return ABSENT
    # enum members that are also str/int stay scalars
    if isinstance(value, SCALAR_TYPES):
        if isinstance(value, str) and value == "":
            return ABSENT
        return FieldValue(ValueKind.SCALAR, value)
    if isinstance(value, BINARY_TYPES):
        value = bytes(value)
        return FieldValue(ValueKind.SCALAR, value) if value else ABSENT
    if isinstance(value, TEMPORAL_TYPES):
        return FieldValue(ValueKind.TEMPORAL, value)
    if isinstance(value, COMPOSITE_TYPES):
        if not value:
            return ABSENT
        return FieldValue(ValueKind.COMPOSITE, value)
    return FieldValue(ValueKind.REFERENCE, reference_id(value))


def _format_temporal(value) -> str:
    if isinstance(value, datetime.timedelta):
        return duration_iso_string(value)
    if isinstance(value, datetime.datetime):
        return format_datetime(value.replace(microsecond=0))
    if isinstance(value, datetime.date):
        return value.isoformat()
    return value.replace(microsecond=0).isoformat()


def _sortable(value):
    if isinstance(value, (set, frozenset)):
        return sorted((_sortable(v) for v in value), key=repr)
    if isinstance(value, dict):
        return {str(k): _sortable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_sortable(v) for v in value]
    return value


def _format_composite(value):
    try:
        return json.dumps(
            _sortable(value),
            sort_keys=True,
            separators=(",", ":"),
            ensure_ascii=False,
            cls=DjangoJSONEncoder,
        )
    except (TypeError, ValueError):
        logger.debug("Composite value of type %s is not serializable", type(value).__name__, exc_info=True)
        return None


def _format_scalar(value) -> str:
    if isinstance(value, enum.Enum) and not isinstance(value, (str, int)):
        return str(value.value)
    if isinstance(value, str):
        return str.__str__(value)
    if isinstance(value, bytes):
        return value.hex()
    if isinstance(value, bool):
        return str(value)
    if isinstance(value, int):
        return int.__repr__(value)
    return str(value)


def _format_reference(identifier):
    if identifier is None:
        return None
    return str(identifier)


FORMATTERS = {
    ValueKind.ABSENT: lambda payload: None,
    ValueKind.TEMPORAL: _format_temporal,
    ValueKind.COMPOSITE: _format_composite,
    ValueKind.REFERENCE: _format_reference,
    ValueKind.SCALAR: _format_scalar,
}


def normalize_value(value: FieldValue) -> str | None:
    return FORMATTERS[value.kind](value.payload)


def normalize(value) -> str | None:
    """Storable text for ``value``, or None when it is empty or unresolvable."""
    if not isinstance(value, FieldValue):
        value = classify(value)
    return normalize_value(value)


def parse_temporal(text: str):
    """Inverse of the temporal format: datetime, date, time or duration."""
    if text.lstrip("-").startswith("P"):
        return parse_duration(text)
    if " " in text:
        return parsedate_to_datetime(text)
    if len(text) == 10 and text[4] == "-":
        return datetime.date.fromisoformat(text)
    return datetime.time.fromisoformat(text)
