"""
Step state machine for composite (video) jobs.

States per step: pending -> queued -> running -> completed | failed | skipped

Rules:
- a step may enter running only when its predecessor (step_index - 1) is
  completed or skipped, and no other step of the job is running
- completing or skipping a step queues its successor
- a failed attempt below max_attempts puts the step back to queued; the
  last one marks it failed, which halts the pipeline (later steps stay
  pending) until an explicit retry
- retry() never touches completed steps
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any
from uuid import UUID

from django.utils import timezone

from alfie.core.enums import QualityTier, STEP_DONE_STATUSES, StepStatus, StepType

from .events import EventPublisher, EventType
from .exceptions import StepTransitionError, truncate_error
from .payloads import VideoPayload
from .stores import StepStore

logger = logging.getLogger(__name__)


# =============================================================================
# CONFIGURATION
# =============================================================================

DEFAULT_STEP_MAX_ATTEMPTS = 3

# Background music runs past the last scene by this much
MUSIC_TAIL_SECONDS = 5

DEFAULT_MIX = {
    "voiceVolume": 100,
    "musicVolume": 15,
    "originalVideoVolume": 0,
}

RETRYABLE_STEP_STATUSES = (StepStatus.FAILED, StepStatus.SKIPPED, StepStatus.QUEUED)

CANCELED_SKIP_REASON = "job canceled"


# =============================================================================
# PLANNING
# =============================================================================


@dataclass
class PlannedStep:
    step_type: str
    input: dict[str, Any] = field(default_factory=dict)


def plan_video_steps(payload: VideoPayload) -> list[PlannedStep]:
    """
    Expand a video request into its ordered pipeline.

    Per scene: gen_keyframe then animate_clip. Then voiceover (when there is
    any text), music (when prompted), concat_clips (more than one scene),
    mix_audio and deliver.
    """
    quality = QualityTier(payload.quality).value
    planned = []

    for index, scene in enumerate(payload.scenes):
        planned.append(PlannedStep(StepType.GEN_KEYFRAME, {
            "sceneIndex": index,
            "visualPrompt": scene.visual_prompt,
            "ratio": payload.ratio,
            "style": payload.style,
            "quality": quality,
        }))
        planned.append(PlannedStep(StepType.ANIMATE_CLIP, {
            "sceneIndex": index,
            "durationSeconds": scene.duration_seconds,
            "ratio": payload.ratio,
            "quality": quality,
        }))

    voiceover_text = payload.global_voiceover or " ".join(
        scene.text for scene in payload.scenes if scene.text
    )
    if voiceover_text:
        planned.append(PlannedStep(StepType.VOICEOVER, {
            "text": voiceover_text,
            "voiceId": payload.voice_id,
            "language": payload.language,
        }))

    if payload.music_prompt:
        planned.append(PlannedStep(StepType.MUSIC, {
            "prompt": payload.music_prompt,
            "durationSeconds": payload.total_duration_seconds + MUSIC_TAIL_SECONDS,
        }))

    if len(payload.scenes) > 1:
        planned.append(PlannedStep(StepType.CONCAT_CLIPS, {"clipCount": len(payload.scenes)}))

    planned.append(PlannedStep(StepType.MIX_AUDIO, dict(DEFAULT_MIX)))
    planned.append(PlannedStep(StepType.DELIVER, {
        "ratio": payload.ratio,
        "format": payload.format,
    }))
    return planned


# =============================================================================
# STATE MACHINE
# =============================================================================


class StepMachine:
    """Drives JobStep transitions through a StepStore and logs each as an event."""

    def __init__(
        self,
        steps: StepStore,
        publisher: EventPublisher,
        max_attempts: int = DEFAULT_STEP_MAX_ATTEMPTS,
    ):
        self.steps = steps
        self.publisher = publisher
        self.max_attempts = max_attempts

    def plan(self, job_id: UUID, payload: VideoPayload) -> list:
        planned = plan_video_steps(payload)
        rows = self.steps.create_many(job_id, [
            {
                "step_type": p.step_type,
                "step_index": index,
                "status": StepStatus.QUEUED if index == 0 else StepStatus.PENDING,
                "input": p.input,
                "max_attempts": self.max_attempts,
            }
            for index, p in enumerate(planned)
        ])
        self.publisher.publish(
            job_id,
            EventType.PIPELINE_CREATED,
            f"Planned {len(planned)} steps",
            {"stepTypes": [str(p.step_type) for p in planned], "totalSteps": len(planned)},
        )
        return rows

    def list_steps(self, job_id: UUID) -> list:
        return self.steps.list_for_job(job_id)

    def next_runnable(self, job_id: UUID):
        """
        The step that may run next, or None.

        Walks steps in order past completed/skipped ones; the first other
        step is runnable if queued (a pending one is promoted first).
        Running or failed steps block the pipeline.
        """
        for step in self.steps.list_for_job(job_id):
            if step.status in STEP_DONE_STATUSES:
                continue
            if step.status == StepStatus.PENDING:
                if self.steps.update_if(step.id, [StepStatus.PENDING], status=StepStatus.QUEUED):
                    step.status = StepStatus.QUEUED
            return step if step.status == StepStatus.QUEUED else None
        return None

    def is_finished(self, job_id: UUID) -> bool:
        steps = self.steps.list_for_job(job_id)
        return bool(steps) and all(s.status in STEP_DONE_STATUSES for s in steps)

    def has_failed(self, job_id: UUID) -> bool:
        return any(s.status == StepStatus.FAILED for s in self.steps.list_for_job(job_id))

    def _predecessor(self, step):
        if step.step_index == 0:
            return None
        for sibling in self.steps.list_for_job(step.job_id):
            if sibling.step_index == step.step_index - 1:
                return sibling
        return None

    def _promote_successor(self, step) -> None:
        for sibling in self.steps.list_for_job(step.job_id):
            if sibling.step_index == step.step_index + 1:
                self.steps.update_if(sibling.id, [StepStatus.PENDING], status=StepStatus.QUEUED)
                return

    def start(self, step):
        """
        queued -> running.

        Raises:
            StepTransitionError: predecessor not done, step not queued, or
                another step of the job is running
        """
        predecessor = self._predecessor(step)
        if predecessor is not None and predecessor.status not in STEP_DONE_STATUSES:
            raise StepTransitionError(
                f"Step {step.step_index} ({step.step_type}) cannot start: "
                f"step {predecessor.step_index} is {predecessor.status}"
            )

        now = timezone.now()
        if not self.steps.start_if_idle(step.id, now):
            raise StepTransitionError(
                f"Step {step.step_index} ({step.step_type}) cannot start: "
                "not queued or another step is running"
            )

        step.status = StepStatus.RUNNING
        step.started_at = now
        logger.info(
            "STEP_START job_id=%s step=%s index=%d attempt=%d",
            step.job_id,
            step.step_type,
            step.step_index,
            step.attempt + 1,
        )
        self.publisher.publish(
            step.job_id,
            EventType.STEP_STARTED,
            f"Step {step.step_type} started",
            {"stepIndex": step.step_index, "attempt": step.attempt + 1},
            step_id=step.id,
        )
        return step

    def complete(self, step, output: dict[str, Any]) -> None:
        now = timezone.now()
        if not self.steps.update_if(
            step.id,
            [StepStatus.RUNNING],
            status=StepStatus.COMPLETED,
            output=output,
            error=None,
            finished_at=now,
            updated_at=now,
        ):
            raise StepTransitionError(f"Step {step.id} is not running")

        step.status = StepStatus.COMPLETED
        step.output = output
        self._promote_successor(step)
        logger.info(
            "STEP_END job_id=%s step=%s index=%d status=completed",
            step.job_id,
            step.step_type,
            step.step_index,
        )
        self.publisher.publish(
            step.job_id,
            EventType.STEP_COMPLETED,
            f"Step {step.step_type} completed",
            {"stepIndex": step.step_index, "output": output},
            step_id=step.id,
        )

    def skip(self, step, reason: str = "") -> bool:
        """Mark a not-yet-finished step skipped; its successor becomes runnable."""
        now = timezone.now()
        skipped = self.steps.update_if(
            step.id,
            [StepStatus.PENDING, StepStatus.QUEUED, StepStatus.RUNNING],
            status=StepStatus.SKIPPED,
            output={"skipReason": reason} if reason else {},
            finished_at=now,
            updated_at=now,
        )
        if not skipped:
            return False

        step.status = StepStatus.SKIPPED
        self._promote_successor(step)
        logger.info(
            "STEP_END job_id=%s step=%s index=%d status=skipped reason=%s",
            step.job_id,
            step.step_type,
            step.step_index,
            reason,
        )
        self.publisher.publish(
            step.job_id,
            EventType.STEP_SKIPPED,
            reason or f"Step {step.step_type} skipped",
            {"stepIndex": step.step_index},
            step_id=step.id,
        )
        return True

    def fail(self, step, error: str) -> str:
        """
        Record a failed attempt.

        Returns:
            "retrying" if the step is queued again, "failed" if exhausted.
        """
        now = timezone.now()
        attempt = step.attempt + 1
        message = truncate_error(error)
        exhausted = attempt >= step.max_attempts
        new_status = StepStatus.FAILED if exhausted else StepStatus.QUEUED

        if not self.steps.update_if(
            step.id,
            [StepStatus.RUNNING],
            status=new_status,
            attempt=attempt,
            error=message,
            finished_at=now,
            updated_at=now,
        ):
            raise StepTransitionError(f"Step {step.id} is not running")

        step.status = new_status
        step.attempt = attempt
        step.error = message

        logger.warning(
            "STEP_END job_id=%s step=%s index=%d status=%s attempt=%d/%d error=%s",
            step.job_id,
            step.step_type,
            step.step_index,
            "failed" if exhausted else "retrying",
            attempt,
            step.max_attempts,
            message[:200],
        )
        self.publisher.publish(
            step.job_id,
            EventType.STEP_FAILED if exhausted else EventType.STEP_RETRYING,
            message,
            {"stepIndex": step.step_index, "attempt": attempt, "maxAttempts": step.max_attempts},
            step_id=step.id,
        )
        return "failed" if exhausted else "retrying"

    def retry(self, step) -> None:
        """
        Reset one step to queued with attempt=0 and no error.

        Raises:
            StepTransitionError: the step is completed, running or pending
        """
        if step.status not in RETRYABLE_STEP_STATUSES:
            raise StepTransitionError(
                f"Step {step.step_index} ({step.step_type}) is {step.status} and cannot be retried"
            )

        now = timezone.now()
        if not self.steps.update_if(
            step.id,
            RETRYABLE_STEP_STATUSES,
            status=StepStatus.QUEUED,
            attempt=0,
            error=None,
            output={},
            started_at=None,
            finished_at=None,
            updated_at=now,
        ):
            raise StepTransitionError(f"Step {step.id} changed state during retry")

        step.status = StepStatus.QUEUED
        step.attempt = 0
        step.error = None
        self.publisher.publish(
            step.job_id,
            EventType.STEP_RETRY_REQUESTED,
            f"Retry requested for step {step.step_type}",
            {"stepIndex": step.step_index},
            step_id=step.id,
        )

    def get(self, job_id: UUID, step_id: UUID):
        return self.steps.get_for_job(job_id, step_id)

    def requeue_orphans(self, job_id: UUID) -> int:
        """running -> queued, for steps whose worker lost its lease."""
        return self.steps.bulk_set_status(
            job_id,
            [StepStatus.RUNNING],
            status=StepStatus.QUEUED,
            started_at=None,
            updated_at=timezone.now(),
        )

    def reset_for_unblock(self, job_id: UUID) -> int:
        """
        Failed, orphaned and cancel-skipped steps go back to queued with a
        fresh attempt budget.
        """
        now = timezone.now()
        for step in self.steps.list_for_job(job_id):
            if step.status == StepStatus.SKIPPED and (step.output or {}).get("skipReason") == CANCELED_SKIP_REASON:
                self.steps.update_if(
                    step.id,
                    [StepStatus.SKIPPED],
                    status=StepStatus.PENDING if step.step_index > 0 else StepStatus.QUEUED,
                    output={},
                    finished_at=None,
                    updated_at=now,
                )
        return self.steps.bulk_set_status(
            job_id,
            [StepStatus.FAILED, StepStatus.RUNNING],
            status=StepStatus.QUEUED,
            attempt=0,
            error=None,
            started_at=None,
            finished_at=None,
            updated_at=timezone.now(),
        )

    def skip_remaining(self, job_id: UUID, reason: str) -> int:
        now = timezone.now()
        return self.steps.bulk_set_status(
            job_id,
            [StepStatus.PENDING, StepStatus.QUEUED, StepStatus.RUNNING],
            status=StepStatus.SKIPPED,
            output={"skipReason": reason},
            finished_at=now,
            updated_at=now,
        )
