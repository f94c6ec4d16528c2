"""
Job queue tables: alfie_job, alfie_job_step, alfie_job_event.
"""

import uuid

import django.db.models.deletion
import django.utils.timezone
from django.db import migrations, models


JOB_STATUS_CHOICES = [
    ("queued", "Queued"),
    ("retrying", "Retrying"),
    ("processing", "Processing"),
    ("done", "Done"),
    ("error", "Error"),
    ("canceled", "Canceled"),
    ("blocked", "Blocked"),
]

STEP_STATUS_CHOICES = [
    ("pending", "Pending"),
    ("queued", "Queued"),
    ("running", "Running"),
    ("completed", "Completed"),
    ("failed", "Failed"),
    ("skipped", "Skipped"),
]


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ("core", "0002_brand_owner_order"),
        ("users", "0001_initial"),
    ]

    operations = [
        migrations.CreateModel(
            name="Job",
            fields=[
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4,
                        editable=False,
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                (
                    "kind",
                    models.CharField(
                        choices=[
                            ("image", "Image"),
                            ("carousel", "Carousel"),
                            ("video", "Video"),
                        ],
                        max_length=20,
                    ),
                ),
                (
                    "job_type",
                    models.CharField(
                        choices=[
                            ("render_images", "Render Images"),
                            ("render_carousels", "Render Carousels"),
                            ("generate_video", "Generate Video"),
                        ],
                        max_length=40,
                    ),
                ),
                (
                    "status",
                    models.CharField(
                        choices=JOB_STATUS_CHOICES,
                        db_index=True,
                        default="queued",
                        max_length=20,
                    ),
                ),
                ("payload", models.JSONField(default=dict)),
                ("result", models.JSONField(blank=True, default=dict)),
                ("attempts", models.PositiveIntegerField(default=0)),
                ("max_attempts", models.PositiveIntegerField(default=3)),
                ("error", models.TextField(blank=True, null=True)),
                ("idempotency_key", models.CharField(max_length=64, unique=True)),
                ("locked_by", models.CharField(blank=True, max_length=255, null=True)),
                ("locked_at", models.DateTimeField(blank=True, null=True)),
                ("lease_expires_at", models.DateTimeField(blank=True, null=True)),
                ("available_at", models.DateTimeField(default=django.utils.timezone.now)),
                ("started_at", models.DateTimeField(blank=True, null=True)),
                ("finished_at", models.DateTimeField(blank=True, null=True)),
                (
                    "brand",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="jobs",
                        to="core.brand",
                    ),
                ),
                (
                    "order",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="jobs",
                        to="core.order",
                    ),
                ),
                (
                    "user",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="jobs",
                        to="users.user",
                    ),
                ),
            ],
            options={
                "db_table": "alfie_job",
                "indexes": [
                    models.Index(
                        fields=["status", "available_at"],
                        name="idx_job_status_available",
                    ),
                    models.Index(
                        fields=["status", "lease_expires_at"],
                        name="idx_job_status_lease",
                    ),
                    models.Index(
                        fields=["user", "-created_at"],
                        name="idx_job_user_created",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="JobStep",
            fields=[
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4,
                        editable=False,
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                (
                    "step_type",
                    models.CharField(
                        choices=[
                            ("gen_keyframe", "Generate Keyframe"),
                            ("animate_clip", "Animate Clip"),
                            ("voiceover", "Voiceover"),
                            ("music", "Music"),
                            ("concat_clips", "Concatenate Clips"),
                            ("mix_audio", "Mix Audio"),
                            ("deliver", "Deliver"),
                        ],
                        max_length=30,
                    ),
                ),
                ("step_index", models.PositiveIntegerField()),
                (
                    "status",
                    models.CharField(
                        choices=STEP_STATUS_CHOICES,
                        default="pending",
                        max_length=20,
                    ),
                ),
                ("attempt", models.PositiveIntegerField(default=0)),
                ("max_attempts", models.PositiveIntegerField(default=3)),
                ("input", models.JSONField(blank=True, default=dict)),
                ("output", models.JSONField(blank=True, default=dict)),
                ("error", models.TextField(blank=True, null=True)),
                ("started_at", models.DateTimeField(blank=True, null=True)),
                ("finished_at", models.DateTimeField(blank=True, null=True)),
                (
                    "job",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="steps",
                        to="jobs.job",
                    ),
                ),
            ],
            options={
                "db_table": "alfie_job_step",
                "indexes": [
                    models.Index(
                        fields=["job", "status"],
                        name="idx_jobstep_job_status",
                    ),
                ],
                "constraints": [
                    models.UniqueConstraint(
                        fields=["job", "step_index"],
                        name="uniq_jobstep_job_index",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="JobEvent",
            fields=[
                (
                    "id",
                    models.BigAutoField(
                        auto_created=True,
                        primary_key=True,
                        serialize=False,
                        verbose_name="ID",
                    ),
                ),
                ("event_type", models.CharField(max_length=50)),
                ("message", models.TextField(blank=True)),
                ("metadata", models.JSONField(blank=True, default=dict)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "job",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="events",
                        to="jobs.job",
                    ),
                ),
                (
                    "step",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="events",
                        to="jobs.jobstep",
                    ),
                ),
            ],
            options={
                "db_table": "alfie_job_event",
                "indexes": [
                    models.Index(
                        fields=["job", "created_at"],
                        name="idx_jobevent_job_created",
                    ),
                ],
            },
        ),
    ]
