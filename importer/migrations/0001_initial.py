import django.core.serializers.json
import django.db.models.deletion
import django.utils.timezone
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [migrations.swappable_dependency(settings.AUTH_USER_MODEL)]

    operations = [
        migrations.CreateModel(
            name="ImportRun",
            fields=[
                (
                    "id",
                    models.AutoField(
                        auto_created=True,
                        primary_key=True,
                        serialize=False,
                        verbose_name="ID",
                    ),
                ),
                ("created", models.DateTimeField(auto_now_add=True)),
                ("modified", models.DateTimeField(auto_now=True)),
                (
                    "source_url",
                    models.URLField(verbose_name="Base URL of the remote API"),
                ),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("running", "Running"),
                            ("completed", "Completed"),
                            ("completed_with_failures", "Completed With Failures"),
                        ],
                        default="running",
                        max_length=30,
                    ),
                ),
                (
                    "started_at",
                    models.DateTimeField(default=django.utils.timezone.now),
                ),
                (
                    "ended_at",
                    models.DateTimeField(
                        blank=True,
                        help_text="Time when the run was finalized",
                        null=True,
                    ),
                ),
                ("items_count", models.PositiveIntegerField(default=0)),
                ("items_imported_count", models.PositiveIntegerField(default=0)),
                (
                    "items_failed_count",
                    models.PositiveIntegerField(
                        default=0,
                        help_text="Permanently failed items, recorded when the run ended",
                    ),
                ),
                (
                    "rate_limit_hits_count",
                    models.PositiveIntegerField(
                        default=0, help_text="429 responses which caused a cooldown"
                    ),
                ),
                (
                    "rate_limit_sleeps_count",
                    models.PositiveIntegerField(
                        default=0,
                        help_text="Cooldowns started by a worker for this run",
                    ),
                ),
                ("total_sleep_seconds", models.PositiveIntegerField(default=0)),
                ("finalize_attempts", models.PositiveIntegerField(default=0)),
                (
                    "last_finalize_attempt_at",
                    models.DateTimeField(blank=True, null=True),
                ),
                (
                    "created_by",
                    models.ForeignKey(
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={"ordering": ("-started_at",)},
        ),
        migrations.CreateModel(
            name="ItemTask",
            fields=[
                (
                    "id",
                    models.AutoField(
                        auto_created=True,
                        primary_key=True,
                        serialize=False,
                        verbose_name="ID",
                    ),
                ),
                ("created", models.DateTimeField(auto_now_add=True)),
                ("modified", models.DateTimeField(auto_now=True)),
                ("external_id", models.CharField(max_length=100)),
                (
                    "name",
                    models.CharField(blank=True, default="", max_length=255),
                ),
                (
                    "url",
                    models.URLField(help_text="Detail endpoint for the remote item"),
                ),
                (
                    "payload",
                    models.JSONField(
                        blank=True,
                        encoder=django.core.serializers.json.DjangoJSONEncoder,
                        help_text="Detail data returned by the remote API",
                        null=True,
                    ),
                ),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("pending", "Pending"),
                            ("processing", "Processing"),
                            ("completed", "Completed"),
                            ("failed", "Failed"),
                        ],
                        default="pending",
                        max_length=20,
                    ),
                ),
                (
                    "attempts",
                    models.PositiveIntegerField(
                        default=0, help_text="Number of failed attempts so far"
                    ),
                ),
                (
                    "last_started",
                    models.DateTimeField(
                        blank=True,
                        help_text="Last time when a worker started processing this item",
                        null=True,
                    ),
                ),
                (
                    "completed",
                    models.DateTimeField(
                        blank=True,
                        help_text="Time when the item was imported without error",
                        null=True,
                    ),
                ),
                (
                    "last_failed_at",
                    models.DateTimeField(
                        blank=True,
                        help_text="Time of the most recent failure",
                        null=True,
                    ),
                ),
                (
                    "failure_reason",
                    models.TextField(
                        blank=True,
                        default="",
                        help_text="Error from the most recent failure",
                    ),
                ),
                (
                    "failure_kind",
                    models.CharField(
                        blank=True,
                        choices=[("Transient", "Transient"), ("Retries", "Retries")],
                        default="",
                        max_length=20,
                    ),
                ),
                (
                    "failure_history",
                    models.JSONField(
                        default=list,
                        encoder=django.core.serializers.json.DjangoJSONEncoder,
                        help_text="Information about previous failures of the task, if any",
                    ),
                ),
                (
                    "task_id",
                    models.UUIDField(
                        blank=True,
                        help_text="UUID of the last Celery task to process this record",
                        null=True,
                    ),
                ),
                (
                    "run",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="item_tasks",
                        to="importer.importrun",
                    ),
                ),
            ],
            options={
                "unique_together": {("run", "external_id")},
                "indexes": [
                    models.Index(
                        fields=["run", "status", "last_failed_at"],
                        name="importer_itemtask_failed_idx",
                    )
                ],
            },
        ),
    ]
