from django.db import models
from django.db.models import Q
from django.utils import timezone


class HistoryRecordQuerySet(models.QuerySet):
    def for_object(self, obj):
        return self.filter(object_type=obj._meta.label, object_id=obj.pk)


class HistoryRecord(models.Model):
    object_type = models.CharField(max_length=255)
    object_id = models.BigIntegerField()
    user_id = models.PositiveBigIntegerField(null=True, blank=True)
    admin_id = models.PositiveBigIntegerField(null=True, blank=True)
    created_at = models.DateTimeField(default=timezone.now, editable=False)

    objects = HistoryRecordQuerySet.as_manager()

    class Meta:
        db_table = "object_history"
        ordering = ["-created_at", "-id"]
        indexes = [
            models.Index(fields=["object_type", "object_id"], name="i_object_type_object_id"),
            models.Index(fields=["created_at"], name="i_object_history_created"),
        ]
        constraints = [
            models.CheckConstraint(
                condition=Q(user_id__isnull=True) | Q(admin_id__isnull=True),
                name="object_history_single_actor",
            ),
        ]

    def __str__(self):
        return f"{self.object_type}#{self.object_id} @ {self.created_at:%Y-%m-%d %H:%M:%S}"


class HistoryDetail(models.Model):
    record = models.ForeignKey(HistoryRecord, on_delete=models.CASCADE, related_name="details")
    field_name = models.CharField(max_length=255)
    old_value = models.TextField(null=True, blank=True)
    new_value = models.TextField(null=True, blank=True)
    created_at = models.DateTimeField(default=timezone.now, editable=False)

    class Meta:
        db_table = "object_history_detail"
        ordering = ["id"]
        constraints = [
            models.CheckConstraint(
                condition=Q(old_value__isnull=False) | Q(new_value__isnull=False),
                name="object_history_detail_has_value",
            ),
        ]

    def __str__(self):
        return f"{self.field_name}: {self.old_value!r} -> {self.new_value!r}"
