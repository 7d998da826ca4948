import datetime
from decimal import Decimal

import pytest
from django.db import DatabaseError, transaction

from object_history.audit.models import HistoryRecord
from object_history.core.actors import Actor, bind_actor
from object_history.core.exceptions import HistoryFlushError
from object_history.core.signals import STAGE_ATTR, connect, disconnect
from object_history.core.units import DatabaseHistoryWriter, history_batch
from tests.testapp.models import ApiKey, Article, Company, Invoice, Owner

pytestmark = pytest.mark.django_db


class BrokenWriter(DatabaseHistoryWriter):
    def persist_batch(self, records):
        raise DatabaseError("history table is read-only")


@pytest.fixture
def capture_disconnected():
    """Detach the save receivers for the duration of a test."""
    disconnect()
    yield
    connect()


def details_of(record):
    return list(record.details.values_list("field_name", "old_value", "new_value"))


def history_for(obj):
    return list(HistoryRecord.objects.for_object(obj).order_by("id"))


class TestCreation:
    def test_creation_snapshot(self):
        article = Article.objects.create(title="Hello", status="draft")
        [record] = history_for(article)
        assert record.object_type == "testapp.Article"
        assert record.object_id == article.pk
        assert details_of(record) == [
            ("title", None, "Hello"),
            ("status", None, "draft"),
            ("views", None, "0"),
        ]

    def test_company_with_owner(self):
        owner = Owner.objects.create(pk=42, name="Ada")
        company = Company.objects.create(name="Acme", owner=owner, notes=None, secret="x", internal_code="C1")
        [record] = history_for(company)
        assert details_of(record) == [("name", None, "Acme"), ("owner", None, "42")]

    def test_unregistered_model_has_no_history(self):
        Owner.objects.create(name="Ada")
        assert HistoryRecord.objects.count() == 0

    def test_non_integer_pk_model_has_no_history(self):
        ApiKey.objects.create(label="ci")
        assert HistoryRecord.objects.count() == 0

    def test_settings_registered_model(self):
        invoice = Invoice.objects.create(number="INV-1", amount=Decimal("12.50"), memo="private")
        [record] = history_for(invoice)
        assert details_of(record) == [("number", None, "INV-1"), ("amount", None, "12.50")]


class TestModification:
    def test_status_change(self):
        article = Article.objects.create(title="Hello", status="draft")
        article.status = "published"
        article.save()
        records = history_for(article)
        assert len(records) == 2
        assert details_of(records[1]) == [("status", "draft", "published")]

    def test_save_without_changes_records_nothing(self):
        article = Article.objects.create(title="Hello", status=None)
        article.status = None
        article.save()
        article.save()
        assert len(history_for(article)) == 1

    def test_auto_now_field_is_excluded(self):
        article = Article.objects.create(title="Hello")
        article.save()
        assert len(history_for(article)) == 1

    def test_update_fields_limits_detection(self):
        article = Article.objects.create(title="Hello", status="draft")
        article.title = "Bye"
        article.status = "archived"
        article.save(update_fields=["title"])
        assert details_of(history_for(article)[-1]) == [("title", "Hello", "Bye")]

    def test_multiple_fields_and_types(self):
        article = Article.objects.create(title="Hello")
        article.views = 3
        article.tags = ["x"]
        article.published_at = datetime.datetime(2024, 3, 5, 14, 7, 9, tzinfo=datetime.timezone.utc)
        article.save()
        assert details_of(history_for(article)[-1]) == [
            ("views", "0", "3"),
            ("published_at", None, "Tue, 05 Mar 2024 14:07:09 +0000"),
            ("tags", None, '["x"]'),
        ]

    def test_foreign_key_change(self):
        first = Owner.objects.create(name="A")
        second = Owner.objects.create(name="B")
        company = Company.objects.create(name="Acme", owner=first)
        company.owner = second
        company.internal_code = "ignored"
        company.save()
        assert details_of(history_for(company)[-1]) == [("owner", str(first.pk), str(second.pk))]

    def test_string_assigned_to_decimal_field(self):
        invoice = Invoice.objects.create(number="INV-2", amount=Decimal("5.00"))
        invoice.amount = "5.00"
        invoice.save()
        assert len(history_for(invoice)) == 1

    def test_deferred_fields_are_skipped(self):
        article = Article.objects.create(title="Hello", status="draft")
        loaded = Article.objects.only("id", "title").get(pk=article.pk)
        loaded.title = "Changed"
        loaded.save()
        assert details_of(history_for(article)[-1]) == [("title", "Hello", "Changed")]

    def test_naive_datetime_equal_to_stored_value_is_not_a_change(self):
        published = datetime.datetime(2024, 3, 5, 14, 7, 9, tzinfo=datetime.timezone.utc)
        article = Article.objects.create(title="Hello", published_at=published)
        article.published_at = published.replace(tzinfo=None)
        with pytest.warns(RuntimeWarning, match="naive datetime"):
            article.save()
        assert len(history_for(article)) == 1

    def test_naive_datetime_is_recorded_in_the_default_timezone(self):
        article = Article.objects.create(title="Hello")
        article.published_at = datetime.datetime(2024, 3, 5, 14, 7, 9)
        with pytest.warns(RuntimeWarning, match="naive datetime"):
            article.save()
        assert details_of(history_for(article)[-1]) == [
            ("published_at", None, "Tue, 05 Mar 2024 14:07:09 +0000"),
        ]

    def test_queryset_update_bypasses_history(self):
        article = Article.objects.create(title="Hello", status="draft")
        Article.objects.filter(pk=article.pk).update(status="published")
        assert len(history_for(article)) == 1


class TestActors:
    def test_privileged_operator_stamps_admin(self):
        with bind_actor(Actor(identifier=7, is_privileged=True)):
            article = Article.objects.create(title="Hello")
        [record] = history_for(article)
        assert record.admin_id == 7
        assert record.user_id is None

    def test_regular_operator_stamps_user(self, use_actor, regular_actor):
        use_actor(regular_actor)
        article = Article.objects.create(title="Hello")
        [record] = history_for(article)
        assert record.user_id == 3
        assert record.admin_id is None

    def test_system_change_has_no_actor(self):
        article = Article.objects.create(title="Hello")
        [record] = history_for(article)
        assert record.user_id is None and record.admin_id is None


class TestUnitOfWorkIntegration:
    def test_batch_writes_once(self, django_capture_on_commit_callbacks):
        with django_capture_on_commit_callbacks(execute=True):
            with history_batch():
                article = Article.objects.create(title="Hello", status="draft")
                article.status = "published"
                article.save()
            assert HistoryRecord.objects.count() == 0
        records = history_for(article)
        assert len(records) == 2
        assert records[0].created_at == records[1].created_at

    def test_rolled_back_transaction_rolls_back_history(self):
        with pytest.raises(RuntimeError):
            with transaction.atomic():
                Article.objects.create(title="Hello")
                raise RuntimeError("abort")
        assert HistoryRecord.objects.count() == 0

    def test_failed_save_does_not_queue_detection(self, fresh_unit):
        article = Article.objects.create(title="Hello", status="draft")
        article.status = "published"
        article.title = None  # NOT NULL
        with pytest.raises(DatabaseError):
            with transaction.atomic():
                article.save()
        assert len(fresh_unit) == 0
        article.refresh_from_db()
        article.save()
        assert len(history_for(article)) == 1

    def test_flush_failure_reaches_the_caller(self, settings, fresh_unit):
        settings.OBJECT_HISTORY = {**settings.OBJECT_HISTORY, "WRITER": "tests.test_signals.BrokenWriter"}
        with pytest.raises(HistoryFlushError):
            Article.objects.create(title="Hello")
        assert len(fresh_unit) == 1
        assert HistoryRecord.objects.count() == 0

    def test_disabled_capture(self, settings):
        settings.OBJECT_HISTORY = {**settings.OBJECT_HISTORY, "ENABLED": False}
        article = Article.objects.create(title="Hello")
        article.title = "Bye"
        article.save()
        assert HistoryRecord.objects.count() == 0

    def test_batch_skips_saves_from_rolled_back_savepoints(self, django_capture_on_commit_callbacks):
        with django_capture_on_commit_callbacks(execute=True):
            with history_batch():
                article = Article.objects.create(title="Hello")
                with pytest.raises(RuntimeError):
                    with transaction.atomic():
                        article.title = "Rolled back"
                        article.save()
                        raise RuntimeError("abort")
        [record] = history_for(article)
        assert details_of(record) == [("title", None, "Hello"), ("views", None, "0")]

    def test_detection_from_failed_save_is_not_written_later(self):
        company = Company.objects.create(name="Acme", internal_code="C1")
        company.name = None  # NOT NULL
        with pytest.raises(DatabaseError):
            with transaction.atomic():
                company.save()
        company.refresh_from_db()
        company.internal_code = "C2"
        company.save(update_fields=["internal_code"])
        assert len(history_for(company)) == 1
        assert STAGE_ATTR not in company.__dict__

    def test_failed_save_then_untracked_only_save(self):
        article = Article.objects.create(title="Hello", status="draft")
        article.status = "published"
        article.title = None  # NOT NULL
        with pytest.raises(DatabaseError):
            with transaction.atomic():
                article.save()
        article.refresh_from_db()
        article.save(update_fields=["updated_at"])
        assert len(history_for(article)) == 1

    def test_disconnected_receivers_capture_nothing(self, capture_disconnected):
        article = Article.objects.create(title="Hello")
        article.title = "Bye"
        article.save()
        assert HistoryRecord.objects.count() == 0


def test_reconnected_receivers_capture_again():
    disconnect()
    connect()
    Article.objects.create(title="Hello")
    assert HistoryRecord.objects.count() == 1
