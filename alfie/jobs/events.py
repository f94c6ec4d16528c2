"""
Progress / event publisher.

publish() appends a JobEvent and, once the surrounding transaction commits,
sends the `job_event_published` signal: the single notification bus that
push subscribers (websocket relays, webhooks) connect to.

snapshot() recomputes progress from the step rows on every call; nothing
is cached, so a dropped event can never make progress lie.

wait_for_job() is the polling fallback, bounded by attempt count.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable
from uuid import UUID

from django.db import transaction
from django.dispatch import Signal

from alfie.core.enums import JobStatus, StepStatus, TERMINAL_JOB_STATUSES

from .exceptions import JobNotFoundError
from .stores import EventStore, JobStore, StepStore

logger = logging.getLogger(__name__)


# Sent with `event` (a JobEvent) after the writing transaction commits
job_event_published = Signal()

RECENT_EVENTS_WINDOW = 50

# Step output fields that carry asset URLs, in display order
ASSET_OUTPUT_FIELDS = (
    "keyframeUrl",
    "clipUrl",
    "voiceoverUrl",
    "musicUrl",
    "finalVideoUrl",
    "mixedVideoUrl",
    "deliveredUrl",
)


class EventType:
    """Event type constants."""

    JOB_ENQUEUED = "job_enqueued"
    JOB_CLAIMED = "job_claimed"
    JOB_COMPLETED = "job_completed"
    JOB_RETRYING = "job_retrying"
    JOB_FAILED = "job_failed"
    JOB_CANCELED = "job_canceled"
    JOB_UNBLOCKED = "job_unblocked"
    LEASE_EXPIRED = "lease_expired"
    PIPELINE_CREATED = "pipeline_created"
    STEP_STARTED = "step_started"
    STEP_COMPLETED = "step_completed"
    STEP_FAILED = "step_failed"
    STEP_RETRYING = "step_retrying"
    STEP_SKIPPED = "step_skipped"
    STEP_RETRY_REQUESTED = "step_retry_requested"


def compute_percent(steps) -> int:
    """Share of steps completed or skipped, rounded to an integer percent."""
    if not steps:
        return 0
    done = sum(1 for s in steps if s.status in (StepStatus.COMPLETED, StepStatus.SKIPPED))
    return round(done / len(steps) * 100)


def current_step(steps):
    """First running step, else first queued step, else None."""
    for status in (StepStatus.RUNNING, StepStatus.QUEUED):
        for step in steps:
            if step.status == status:
                return step
    return None


def collect_assets(steps) -> list[str]:
    assets = []
    for step in steps:
        if step.status != StepStatus.COMPLETED:
            continue
        output = step.output or {}
        for key in ASSET_OUTPUT_FIELDS:
            url = output.get(key)
            if url and url not in assets:
                assets.append(url)
    return assets


def _step_dict(step) -> dict[str, Any]:
    return {
        "id": str(step.id),
        "stepType": step.step_type,
        "stepIndex": step.step_index,
        "status": step.status,
        "attempt": step.attempt,
        "error": step.error,
    }


@dataclass
class JobProgressState:
    job_id: UUID
    status: str
    attempts: int
    max_attempts: int
    error: str | None
    total_steps: int
    completed_steps: int
    skipped_steps: int
    failed_steps: int
    percent_complete: int
    current_step: dict[str, Any] | None
    steps: list[dict[str, Any]] = field(default_factory=list)
    assets: list[str] = field(default_factory=list)
    recent_events: list[dict[str, Any]] = field(default_factory=list)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_JOB_STATUSES

    def to_dict(self) -> dict[str, Any]:
        return {
            "jobId": str(self.job_id),
            "status": self.status,
            "attempts": self.attempts,
            "maxAttempts": self.max_attempts,
            "error": self.error,
            "totalSteps": self.total_steps,
            "completedSteps": self.completed_steps,
            "skippedSteps": self.skipped_steps,
            "failedSteps": self.failed_steps,
            "percentComplete": self.percent_complete,
            "currentStep": self.current_step,
            "steps": self.steps,
            "assets": self.assets,
            "recentEvents": self.recent_events,
        }


class EventPublisher:
    """Append-only event log plus derived progress snapshots."""

    def __init__(self, events: EventStore, jobs: JobStore, steps: StepStore):
        self.events = events
        self.jobs = jobs
        self.steps = steps

    def publish(
        self,
        job_id: UUID,
        event_type: str,
        message: str = "",
        metadata: dict[str, Any] | None = None,
        step_id: UUID | None = None,
    ):
        event = self.events.append(job_id, event_type, message, metadata or {}, step_id=step_id)
        transaction.on_commit(
            lambda: job_event_published.send(sender=EventPublisher, event=event)
        )
        return event

    def recent(self, job_id: UUID, limit: int = RECENT_EVENTS_WINDOW) -> list:
        return self.events.recent(job_id, limit)

    def snapshot(self, job_id: UUID) -> JobProgressState:
        job = self.jobs.get(job_id)
        if job is None:
            raise JobNotFoundError(f"Job {job_id} not found")

        steps = self.steps.list_for_job(job_id)
        if steps:
            percent = compute_percent(steps)
        else:
            # Single-shot jobs have no sub-steps: 0 until done
            percent = 100 if job.status == JobStatus.DONE else 0

        active = current_step(steps)
        result_assets = (job.result or {}).get("assets") or []

        return JobProgressState(
            job_id=job.id,
            status=job.status,
            attempts=job.attempts,
            max_attempts=job.max_attempts,
            error=job.error,
            total_steps=len(steps),
            completed_steps=sum(1 for s in steps if s.status == StepStatus.COMPLETED),
            skipped_steps=sum(1 for s in steps if s.status == StepStatus.SKIPPED),
            failed_steps=sum(1 for s in steps if s.status == StepStatus.FAILED),
            percent_complete=percent,
            current_step=_step_dict(active) if active else None,
            steps=[_step_dict(s) for s in steps],
            assets=collect_assets(steps) or list(result_assets),
            recent_events=[e.to_dict() for e in self.recent(job_id)],
        )


def wait_for_job(
    publisher: EventPublisher,
    job_id: UUID,
    *,
    interval_s: float | None = None,
    max_attempts: int | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> JobProgressState:
    """
    Poll a job's snapshot until it is terminal or the attempt budget runs out.

    Returns the last snapshot either way; callers check `is_terminal`.
    """
    from django.conf import settings

    if interval_s is None:
        interval_s = settings.ALFIE_PROGRESS_POLL_INTERVAL_S
    if max_attempts is None:
        max_attempts = settings.ALFIE_PROGRESS_POLL_MAX_ATTEMPTS

    state = publisher.snapshot(job_id)
    attempt = 1
    while not state.is_terminal and attempt < max_attempts:
        sleep(interval_s)
        state = publisher.snapshot(job_id)
        attempt += 1

    if not state.is_terminal:
        logger.warning(
            "Stopped polling job %s after %d attempts (status=%s)",
            job_id,
            attempt,
            state.status,
        )
    return state
