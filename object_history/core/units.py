"""Pending history records and the flush that makes them durable.

A ``UnitOfWork`` owns the queue. The active unit is held in a context
variable, so each request, thread or task works on its own queue.
"""
import logging
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field

from django.db import router, transaction
from django.utils import timezone
from django.utils.module_loading import import_string

from .conf import history_settings
from .exceptions import HistoryFlushError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FieldDelta:
    field_name: str
    old_value: str | None
    new_value: str | None

    def __post_init__(self):
        if self.old_value is None and self.new_value is None:
            raise ValueError(f"Delta for {self.field_name!r} has neither an old nor a new value")


@dataclass
class PendingRecord:
    object_type: str
    object_id: int
    deltas: list = field(default_factory=list)
    user_id: int | None = None
    admin_id: int | None = None

    def __post_init__(self):
        if not self.deltas:
            raise ValueError(f"History record for {self.object_type}#{self.object_id} has no details")
        if self.user_id is not None and self.admin_id is not None:
            raise ValueError("A history record is stamped with either a user or an admin, not both")


class DatabaseHistoryWriter:
    """Stores each record with its details in one atomic block."""

    def __init__(self, using=None):
        self.using = using

    def persist_batch(self, records) -> list:
        from object_history.audit.models import HistoryDetail, HistoryRecord

        using = self.using or router.db_for_write(HistoryRecord)
        now = timezone.now()
        saved = []
        with transaction.atomic(using=using):
            for pending in records:
                record = HistoryRecord(
                    object_type=pending.object_type,
                    object_id=pending.object_id,
                    user_id=pending.user_id,
                    admin_id=pending.admin_id,
                    created_at=now,
                )
                record.save(using=using)
                HistoryDetail.objects.using(using).bulk_create(
                    [
                        HistoryDetail(
                            record=record,
                            field_name=delta.field_name,
                            old_value=delta.old_value,
                            new_value=delta.new_value,
                            created_at=now,
                        )
                        for delta in pending.deltas
                    ]
                )
                saved.append(record)
        return saved


def load_writer():
    writer_class = import_string(history_settings()["WRITER"])
    return writer_class()


class UnitOfWork:
    def __init__(self, writer=None, deferred: bool = False):
        self.deferred = deferred
        self.pending: list[PendingRecord] = []
        self.staged: dict = {}
        self.closed = False
        self._writer = writer

    def __len__(self):
        return len(self.pending)

    @property
    def writer(self):
        if self._writer is None:
            self._writer = load_writer()
        return self._writer

    def stage(self, key, record: PendingRecord | None):
        """Hold a detected record until the save it belongs to has gone through."""
        if record is None:
            self.staged.pop(key, None)
        else:
            self.staged[key] = record

    def unstage(self, key) -> PendingRecord | None:
        return self.staged.pop(key, None)

    def add(self, record: PendingRecord):
        if not isinstance(record, PendingRecord):
            raise ValueError(f"Expected a PendingRecord, got {type(record).__name__}")
        self.pending.append(record)

    def add_on_commit(self, record: PendingRecord, using=None):
        """Queue ``record`` once the transaction on ``using`` commits.

        Outside a transaction this is immediate. A record whose savepoint is
        rolled back is never queued.
        """

        def queue():
            if not self.closed:
                self.add(record)

        transaction.on_commit(queue, using=using)

    def flush(self) -> list:
        batch = list(self.pending)
        if not batch:
            return []
        try:
            saved = self.writer.persist_batch(batch)
        except Exception as exc:
            logger.exception("Failed to persist %d history record(s); keeping them queued", len(batch))
            raise HistoryFlushError(
                f"Failed to persist {len(batch)} history record(s)", pending=len(self.pending)
            ) from exc
        written = {id(r) for r in batch}
        self.pending = [r for r in self.pending if id(r) not in written]
        logger.debug("Flushed %d history record(s)", len(batch))
        return saved

    def discard(self):
        if self.pending:
            logger.warning(
                "Discarding %d unflushed history record(s): %s",
                len(self.pending),
                ", ".join(f"{r.object_type}#{r.object_id}" for r in self.pending),
            )
        self.pending = []
        self.staged.clear()
        self.closed = True


_active_unit: ContextVar = ContextVar("object_history_unit", default=None)


def current_unit() -> UnitOfWork:
    unit = _active_unit.get()
    if unit is None:
        unit = UnitOfWork()
        _active_unit.set(unit)
    return unit


def open_unit(deferred: bool = False):
    return _active_unit.set(UnitOfWork(deferred=deferred))


def close_unit(token):
    unit = _active_unit.get()
    if unit is not None:
        unit.discard()
    _active_unit.reset(token)


@contextmanager
def history_batch(using=None):
    """Queue every captured change and write them together on exit.

    Nested blocks share the outermost unit. If the block raises, queued
    records are dropped. Changes are queued as their transaction commits, so
    inside ``transaction.atomic`` the write waits for the outermost commit on
    ``using`` and skips changes from rolled back savepoints.
    """
    outer = _active_unit.get()
    if outer is not None and outer.deferred:
        yield outer
        return

    unit = UnitOfWork(deferred=True)
    token = _active_unit.set(unit)
    try:
        yield unit
    except BaseException:
        unit.discard()
        raise
    else:
        transaction.on_commit(unit.flush, using=using)
    finally:
        _active_unit.reset(token)
