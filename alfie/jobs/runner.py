"""
Job Runner.

Executes one claimed job to a recorded outcome:

- image / carousel jobs: one handler call, then complete()
- video jobs: walk the step pipeline in step_index order, one step at a
  time, until every step is completed or skipped

Cancellation checkpoints sit before each step starts and before each
result is persisted. A worker that no longer holds the job (canceled,
unblocked or reclaimed after lease expiry) discards what it produced.

Step failures:
- attempts left: the step goes back to queued and the job is deferred
  with backoff, without spending a job attempt
- exhausted: the step is failed and the job is marked error

Any other exception is caught here and recorded through JobQueue.fail();
a single job's failure never reaches the worker loop.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable
from uuid import UUID

from alfie.core.enums import JobType, StepStatus, StepType

from .events import collect_assets
from .exceptions import JobQueueError, StepSkipped
from .handlers import JOB_HANDLERS, STEP_HANDLERS, HandlerContext
from .payloads import parse_payload
from .queue import JobQueue
from .steps import StepMachine

if TYPE_CHECKING:
    from alfie.jobs.models import Job

logger = logging.getLogger(__name__)


# Outcomes reported by run_job()
DONE = "done"
DEFERRED = "deferred"
ERROR = "error"
DISCARDED = "discarded"


@dataclass
class RunResult:
    """Result of running one claimed job."""
    job_id: UUID
    outcome: str
    error: str | None = None
    duration_ms: int = 0

    @property
    def success(self) -> bool:
        return self.outcome == DONE


def enrich_input(step, steps) -> dict[str, Any]:
    """
    Step input plus the outputs of completed predecessors it consumes.

    animate_clip gets its scene's keyframe; concat_clips gets every clip in
    scene order; mix_audio gets the video and audio tracks; deliver gets the
    most finished video available.
    """
    data = dict(step.input or {})
    completed = [s for s in steps if s.status == StepStatus.COMPLETED and s.step_index < step.step_index]

    def outputs(step_type):
        return [s.output or {} for s in completed if s.step_type == step_type]

    def first(step_type, key):
        for output in outputs(step_type):
            if output.get(key):
                return output[key]
        return None

    clips = sorted(
        (o for o in outputs(StepType.ANIMATE_CLIP) if o.get("clipUrl")),
        key=lambda o: o.get("sceneIndex") or 0,
    )
    clip_urls = [o["clipUrl"] for o in clips]

    if step.step_type == StepType.ANIMATE_CLIP:
        for output in outputs(StepType.GEN_KEYFRAME):
            if output.get("sceneIndex") == data.get("sceneIndex"):
                data["keyframeUrl"] = output.get("keyframeUrl")
    elif step.step_type == StepType.CONCAT_CLIPS:
        data["clipUrls"] = clip_urls
    elif step.step_type == StepType.MIX_AUDIO:
        data["videoUrl"] = first(StepType.CONCAT_CLIPS, "finalVideoUrl") or (clip_urls[0] if clip_urls else None)
        data["voiceoverUrl"] = first(StepType.VOICEOVER, "voiceoverUrl")
        data["musicUrl"] = first(StepType.MUSIC, "musicUrl")
    elif step.step_type == StepType.DELIVER:
        data["finalVideoUrl"] = (
            first(StepType.MIX_AUDIO, "mixedVideoUrl")
            or first(StepType.CONCAT_CLIPS, "finalVideoUrl")
            or (clip_urls[0] if clip_urls else None)
        )
    return data


class JobRunner:
    """Runs claimed jobs through their handlers."""

    def __init__(
        self,
        queue: JobQueue,
        steps: StepMachine,
        context: HandlerContext,
        job_handlers: dict[str, Callable] | None = None,
        step_handlers: dict[str, Callable] | None = None,
    ):
        self.queue = queue
        self.steps = steps
        self.context = context
        self.job_handlers = JOB_HANDLERS if job_handlers is None else job_handlers
        self.step_handlers = STEP_HANDLERS if step_handlers is None else step_handlers

    def run_once(self, worker_id: str) -> RunResult | None:
        """Claim and run one job; None when nothing was claimable."""
        claim = self.queue.claim_next(worker_id)
        if not claim.claimed:
            return None
        return self.run_job(claim.job, worker_id)

    def run_job(self, job: "Job", worker_id: str) -> RunResult:
        start = time.monotonic()
        logger.info(
            "JOB_START job_id=%s job_type=%s brand_id=%s attempt=%d/%d worker=%s",
            job.id,
            job.job_type,
            job.brand_id,
            job.attempts + 1,
            job.max_attempts,
            worker_id,
        )

        try:
            payload = parse_payload(job.kind, job.payload)
            if job.job_type == JobType.GENERATE_VIDEO:
                outcome, error = self._run_pipeline(job, payload, worker_id)
            else:
                outcome, error = self._run_single(job, payload, worker_id)
        except Exception as e:
            error = str(e) or type(e).__name__
            logger.exception("Job %s failed: %s", job.id, error)
            outcome = self.queue.fail(job.id, worker_id, error) or DISCARDED

        duration_ms = int((time.monotonic() - start) * 1000)
        logger.info(
            "JOB_END job_id=%s outcome=%s duration_ms=%d",
            job.id,
            outcome,
            duration_ms,
        )
        return RunResult(job_id=job.id, outcome=outcome, error=error, duration_ms=duration_ms)

    def _discard(self, job: "Job", what: str) -> tuple[str, str | None]:
        reason = "canceled" if self.queue.is_canceled(job.id) else "lease lost"
        logger.warning("Discarding %s of job %s: %s", what, job.id, reason)
        return DISCARDED, None

    # -------------------------------------------------------------------------
    # Single-shot jobs
    # -------------------------------------------------------------------------

    def _run_single(self, job: "Job", payload, worker_id: str) -> tuple[str, str | None]:
        handler = self.job_handlers.get(job.job_type)
        if handler is None:
            raise JobQueueError(f"No handler registered for job type {job.job_type}")

        result = handler(job, payload, self.context)

        if not self.queue.holds_lease(job.id, worker_id):
            return self._discard(job, "result")
        if not self.queue.complete(job.id, worker_id, result):
            return self._discard(job, "result")
        return DONE, None

    # -------------------------------------------------------------------------
    # Step pipeline
    # -------------------------------------------------------------------------

    def _run_pipeline(self, job: "Job", payload, worker_id: str) -> tuple[str, str | None]:
        # This worker holds the lease, so any running step is left over from a lost attempt
        self.steps.requeue_orphans(job.id)

        while True:
            # Checkpoint: before starting a step
            if not self.queue.holds_lease(job.id, worker_id):
                return self._discard(job, "pipeline")

            step = self.steps.next_runnable(job.id)
            if step is None:
                break

            step.input = enrich_input(step, self.steps.list_steps(job.id))
            self.steps.start(step)

            try:
                handler = self.step_handlers[step.step_type]
                output = handler(step, job, payload, self.context)
            except StepSkipped as skip:
                if not self.queue.holds_lease(job.id, worker_id):
                    return self._discard(job, f"step {step.step_type}")
                self.steps.skip(step, skip.reason)
                continue
            except Exception as e:
                error = str(e) or type(e).__name__
                logger.exception("Step %s of job %s failed: %s", step.step_type, job.id, error)
                if not self.queue.holds_lease(job.id, worker_id):
                    return self._discard(job, f"step {step.step_type}")
                return self._step_failed(job, step, worker_id, error)

            # Checkpoint: before persisting the result
            if not self.queue.holds_lease(job.id, worker_id):
                return self._discard(job, f"step {step.step_type}")

            self.steps.complete(step, output)
            self.queue.extend_lease(job.id, worker_id)

        steps = self.steps.list_steps(job.id)
        if self.steps.is_finished(job.id):
            result = {
                "assets": collect_assets(steps),
                "deliveredUrl": next(
                    (
                        (s.output or {}).get("deliveredUrl")
                        for s in steps
                        if s.step_type == StepType.DELIVER and s.status == StepStatus.COMPLETED
                    ),
                    None,
                ),
            }
            if not self.queue.complete(job.id, worker_id, result):
                return self._discard(job, "result")
            return DONE, None

        if self.steps.has_failed(job.id):
            error = "Pipeline halted on a failed step"
            self.queue.fail(job.id, worker_id, error, terminal=True)
            return ERROR, error

        error = "Pipeline has no runnable step"
        outcome = self.queue.fail(job.id, worker_id, error)
        return outcome or DISCARDED, error

    def _step_failed(self, job: "Job", step, worker_id: str, error: str) -> tuple[str, str | None]:
        message = f"Step {step.step_type} failed: {error}"
        if self.steps.fail(step, error) == "failed":
            self.queue.fail(job.id, worker_id, message, terminal=True)
            return ERROR, message

        delay = self.queue.backoff_delay(step.attempt)
        self.queue.defer(job.id, worker_id, delay, message)
        return DEFERRED, message
