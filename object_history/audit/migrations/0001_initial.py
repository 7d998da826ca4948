import django.db.models.deletion
import django.utils.timezone
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="HistoryRecord",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("object_type", models.CharField(max_length=255)),
                ("object_id", models.BigIntegerField()),
                ("user_id", models.PositiveBigIntegerField(blank=True, null=True)),
                ("admin_id", models.PositiveBigIntegerField(blank=True, null=True)),
                ("created_at", models.DateTimeField(default=django.utils.timezone.now, editable=False)),
            ],
            options={
                "db_table": "object_history",
                "ordering": ["-created_at", "-id"],
                "indexes": [
                    models.Index(fields=["object_type", "object_id"], name="i_object_type_object_id"),
                    models.Index(fields=["created_at"], name="i_object_history_created"),
                ],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(("user_id__isnull", True), ("admin_id__isnull", True), _connector="OR"),
                        name="object_history_single_actor",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="HistoryDetail",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("field_name", models.CharField(max_length=255)),
                ("old_value", models.TextField(blank=True, null=True)),
                ("new_value", models.TextField(blank=True, null=True)),
                ("created_at", models.DateTimeField(default=django.utils.timezone.now, editable=False)),
                (
                    "record",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="details",
                        to="audit.historyrecord",
                    ),
                ),
            ],
            options={
                "db_table": "object_history_detail",
                "ordering": ["id"],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(("old_value__isnull", False), ("new_value__isnull", False), _connector="OR"),
                        name="object_history_detail_has_value",
                    ),
                ],
            },
        ),
    ]
