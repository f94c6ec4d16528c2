"""
Job, JobStep and JobEvent: durable state of the media generation queue.

Job lifecycle: queued -> processing -> done | error | canceled
(retrying re-enters processing after backoff, blocked waits for unblock)

CRITICAL INVARIANTS:
- idempotency_key is unique; admission never inserts two jobs for one key
- exactly one worker holds a job: status=processing + locked_by + lease
- steps of one job run strictly in ascending step_index, one at a time
- events are append-only
"""

from __future__ import annotations

import uuid

from django.db import models
from django.utils import timezone

from alfie.core.enums import (
    JobKind,
    JobStatus,
    JobType,
    StepStatus,
    StepType,
    TERMINAL_JOB_STATUSES,
)
from alfie.core.models import TimestampedModel


class Job(TimestampedModel):
    """
    One unit of requested media generation.

    Job leasing:
    - Worker claims job by setting status=processing, locked_by, locked_at,
      lease_expires_at in one conditional update
    - Heartbeats push lease_expires_at forward
    - Expired leases are reclaimed by release_expired_leases()

    Retry policy:
    - attempts counts failed executions; below max_attempts the job goes
      back to retrying with available_at pushed out by backoff
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    user = models.ForeignKey(
        "users.User",
        on_delete=models.CASCADE,
        related_name="jobs",
    )
    brand = models.ForeignKey(
        "core.Brand",
        on_delete=models.CASCADE,
        related_name="jobs",
    )
    order = models.ForeignKey(
        "core.Order",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="jobs",
    )
    kind = models.CharField(max_length=20, choices=JobKind.choices)
    job_type = models.CharField(max_length=40, choices=JobType.choices)
    status = models.CharField(
        max_length=20,
        choices=JobStatus.choices,
        default=JobStatus.QUEUED,
        db_index=True,
    )

    payload = models.JSONField(default=dict)
    result = models.JSONField(default=dict, blank=True)

    # Retry tracking
    attempts = models.PositiveIntegerField(default=0)
    max_attempts = models.PositiveIntegerField(default=3)
    error = models.TextField(null=True, blank=True)

    idempotency_key = models.CharField(max_length=64, unique=True)

    # Job leasing
    locked_by = models.CharField(max_length=255, null=True, blank=True)
    locked_at = models.DateTimeField(null=True, blank=True)
    lease_expires_at = models.DateTimeField(null=True, blank=True)

    # Scheduling (backoff pushes this into the future)
    available_at = models.DateTimeField(default=timezone.now)

    started_at = models.DateTimeField(null=True, blank=True)
    finished_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        db_table = "alfie_job"
        indexes = [
            # Worker query: next claimable job
            models.Index(
                fields=["status", "available_at"],
                name="idx_job_status_available",
            ),
            # Lease reaper
            models.Index(
                fields=["status", "lease_expires_at"],
                name="idx_job_status_lease",
            ),
            # Owner history
            models.Index(
                fields=["user", "-created_at"],
                name="idx_job_user_created",
            ),
        ]

    def __str__(self) -> str:
        return f"Job {self.id} {self.job_type} [{self.status}]"

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_JOB_STATUSES


class JobStep(TimestampedModel):
    """
    Ordered sub-task of a composite (video) job.

    A step may only enter running when its predecessor is completed or
    skipped, and never while another step of the same job is running.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    job = models.ForeignKey(
        Job,
        on_delete=models.CASCADE,
        related_name="steps",
    )
    step_type = models.CharField(max_length=30, choices=StepType.choices)
    step_index = models.PositiveIntegerField()
    status = models.CharField(
        max_length=20,
        choices=StepStatus.choices,
        default=StepStatus.PENDING,
    )
    attempt = models.PositiveIntegerField(default=0)
    max_attempts = models.PositiveIntegerField(default=3)
    input = models.JSONField(default=dict, blank=True)
    output = models.JSONField(default=dict, blank=True)
    error = models.TextField(null=True, blank=True)
    started_at = models.DateTimeField(null=True, blank=True)
    finished_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        db_table = "alfie_job_step"
        constraints = [
            models.UniqueConstraint(
                fields=["job", "step_index"],
                name="uniq_jobstep_job_index",
            ),
        ]
        indexes = [
            models.Index(
                fields=["job", "status"],
                name="idx_jobstep_job_status",
            ),
        ]

    def __str__(self) -> str:
        return f"JobStep {self.job_id}#{self.step_index} {self.step_type} [{self.status}]"


class JobEvent(models.Model):
    """
    Append-only event log entry for a job (and optionally one step).

    Never updated or deleted. Consumers read a bounded recent window.
    """

    job = models.ForeignKey(
        Job,
        on_delete=models.CASCADE,
        related_name="events",
    )
    step = models.ForeignKey(
        JobStep,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="events",
    )
    event_type = models.CharField(max_length=50)
    message = models.TextField(blank=True)
    metadata = models.JSONField(default=dict, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "alfie_job_event"
        indexes = [
            models.Index(
                fields=["job", "created_at"],
                name="idx_jobevent_job_created",
            ),
        ]

    def __str__(self) -> str:
        return f"JobEvent {self.event_type} for {self.job_id}"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "jobId": str(self.job_id),
            "stepId": str(self.step_id) if self.step_id else None,
            "eventType": self.event_type,
            "message": self.message,
            "metadata": self.metadata,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }
