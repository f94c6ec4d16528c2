"""
Job Queue Service.

Durable job queue with idempotent admission and leased claims.

This module provides JobQueue with:
- enqueue(): Validate, fingerprint, reserve quota and insert a job
- claim_next(): Claim the next available job with an atomic conditional update
- complete(): Mark a job done (only by the worker holding it)
- fail(): Record a failed attempt with retry/backoff logic
- defer(): Hand a composite job back for a step-level retry
- extend_lease(): Push the lease forward (heartbeat)
- release_expired_leases(): Reclaim jobs of crashed workers
- unblock() / cancel() / retry_step(): owner-scoped operator actions

Job leasing ensures no double-execution:
- Worker claims job by one UPDATE: status IN (queued, retrying) -> processing
- The UPDATE sets locked_by, locked_at and lease_expires_at
- Every later write by the worker is conditional on status=processing and
  locked_by=<worker>, so a canceled, unblocked or reclaimed job is never
  overwritten by a stale worker

Retry policy:
- attempts counts failed executions (monotonic; only unblock resets it)
- Below max_attempts the job goes to retrying with
  available_at = now + min(base * 2^(attempts-1), max)
- At max_attempts the job is marked error with a truncated message
"""

from __future__ import annotations

import logging
import socket
import uuid as uuid_module
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any, Iterable
from uuid import UUID

from django.db import IntegrityError, transaction
from django.utils import timezone

from alfie.core.enums import (
    CLAIMABLE_JOB_STATUSES,
    JOB_TYPE_BY_KIND,
    JobKind,
    JobStatus,
    OrderStatus,
    TERMINAL_JOB_STATUSES,
)
from alfie.quotas.ledger import QuotaLedger

from .events import EventPublisher, EventType
from .exceptions import (
    JobNotFoundError,
    JobQueueError,
    OrderNotFoundError,
    StepTransitionError,
    truncate_error,
)
from .idempotency import build_idempotency_key
from .payloads import parse_payload
from .steps import CANCELED_SKIP_REASON, StepMachine
from .stores import JobStore, OrderStore

if TYPE_CHECKING:
    from alfie.jobs.models import Job, JobStep

logger = logging.getLogger(__name__)


# =============================================================================
# CONFIGURATION
# =============================================================================

DEFAULT_LEASE_SECONDS = 300
DEFAULT_MAX_ATTEMPTS = 3
BACKOFF_BASE_SECONDS = 15
BACKOFF_MAX_SECONDS = 900

NON_TERMINAL_JOB_STATUSES = (
    JobStatus.QUEUED,
    JobStatus.RETRYING,
    JobStatus.PROCESSING,
    JobStatus.BLOCKED,
)

# Statuses a job may leave when one of its steps is retried; done and
# canceled jobs are only reopened by unblock
STEP_RETRY_REQUEUE_STATUSES = (
    JobStatus.QUEUED,
    JobStatus.RETRYING,
    JobStatus.ERROR,
    JobStatus.BLOCKED,
)

_RELEASED_LOCK = {
    "locked_by": None,
    "locked_at": None,
    "lease_expires_at": None,
}


@dataclass
class QueueConfig:
    lease_seconds: int = DEFAULT_LEASE_SECONDS
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    backoff_base_s: int = BACKOFF_BASE_SECONDS
    backoff_max_s: int = BACKOFF_MAX_SECONDS

    @classmethod
    def from_settings(cls) -> "QueueConfig":
        from django.conf import settings

        return cls(
            lease_seconds=settings.ALFIE_JOB_LEASE_SECONDS,
            max_attempts=settings.ALFIE_JOB_MAX_ATTEMPTS,
            backoff_base_s=settings.ALFIE_BACKOFF_BASE_S,
            backoff_max_s=settings.ALFIE_BACKOFF_MAX_S,
        )


def backoff_delay(attempts: int, base_s: int = BACKOFF_BASE_SECONDS, max_s: int = BACKOFF_MAX_SECONDS) -> int:
    """Seconds to wait before attempt number `attempts + 1`."""
    return min(base_s * 2 ** max(attempts - 1, 0), max_s)


def order_status_for(job_statuses: Iterable[str]) -> OrderStatus:
    """
    Roll an order's job statuses up into the order status.

    Any unfinished job keeps the order in progress; once all are terminal
    the order is completed (all done), partial (some done), canceled (all
    canceled) or failed.
    """
    statuses = list(job_statuses)
    if not statuses or any(s not in TERMINAL_JOB_STATUSES for s in statuses):
        return OrderStatus.IN_PROGRESS
    done = sum(1 for s in statuses if s == JobStatus.DONE)
    if done == len(statuses):
        return OrderStatus.COMPLETED
    if done:
        return OrderStatus.PARTIAL
    if all(s == JobStatus.CANCELED for s in statuses):
        return OrderStatus.CANCELED
    return OrderStatus.FAILED


def default_worker_id() -> str:
    return f"{socket.gethostname()}-{uuid_module.uuid4().hex[:8]}"


def _parse_uuid(value: Any) -> UUID | None:
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except (ValueError, TypeError):
        return None


# =============================================================================
# RESULT TYPES
# =============================================================================


@dataclass
class EnqueueResult:
    """Result of admitting a job."""
    job_id: UUID
    order_id: UUID | None
    job_type: str
    created: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "orderId": str(self.order_id) if self.order_id else None,
            "jobId": str(self.job_id),
            "jobType": self.job_type,
            "created": self.created,
        }


@dataclass
class ClaimResult:
    """Result of claiming a job."""
    job: "Job | None"
    claimed: bool
    reason: str = ""


@dataclass
class UnblockResult:
    updated: int
    blocked_reset: int
    processed_ids: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "updated": self.updated,
            "blockedReset": self.blocked_reset,
            "processedIds": self.processed_ids,
        }


# =============================================================================
# JOB QUEUE
# =============================================================================


class JobQueue:
    """Job admission and lifecycle over injected stores."""

    def __init__(
        self,
        jobs: JobStore,
        orders: OrderStore,
        steps: StepMachine,
        publisher: EventPublisher,
        ledger: QuotaLedger,
        config: QueueConfig | None = None,
    ):
        self.jobs = jobs
        self.orders = orders
        self.steps = steps
        self.publisher = publisher
        self.ledger = ledger
        self.config = config or QueueConfig()

    def backoff_delay(self, attempts: int) -> int:
        return backoff_delay(attempts, self.config.backoff_base_s, self.config.backoff_max_s)

    # -------------------------------------------------------------------------
    # Admission
    # -------------------------------------------------------------------------

    def enqueue(
        self,
        *,
        user_id: UUID,
        brand_id: UUID,
        kind: str,
        payload: Any,
        order_id: str | None = None,
    ) -> EnqueueResult:
        """
        Admit a job request, at most once per idempotency key.

        The key is derived from the order id as given, so a retried request
        without an order id maps to the same job rather than a new order.

        Raises:
            JobQueueError(code="invalid_kind"): unknown kind
            PayloadValidationError: payload does not match the kind's schema
            OrderNotFoundError: order_id unknown or not the caller's
            QuotaExceededError: admission would exceed the brand's quota
        """
        if kind not in JobKind.values:
            raise JobQueueError(f"Unknown job kind: {kind!r}", code="invalid_kind")

        job_kind = JobKind(kind)
        job_type = JOB_TYPE_BY_KIND[job_kind]
        validated = parse_payload(kind, payload)
        payload_data = validated.model_dump(mode="json")

        key = build_idempotency_key(
            brand_id=brand_id,
            order_id=order_id,
            user_id=user_id,
            job_type=job_type.value,
            payload=payload_data,
        )

        existing = self.jobs.find_by_key(key)
        if existing is not None:
            return self._deduplicated(existing)

        try:
            with transaction.atomic():
                order = self._resolve_order(user_id, brand_id, job_kind, order_id, validated)
                self.ledger.reserve_for_job(brand_id, job_kind, validated)
                job = self.jobs.insert(
                    user_id=user_id,
                    brand_id=brand_id,
                    order_id=order.id,
                    kind=job_kind,
                    job_type=job_type,
                    status=JobStatus.QUEUED,
                    payload={
                        **payload_data,
                        "order_id": str(order.id),
                        "brand_id": str(brand_id),
                    },
                    max_attempts=self.config.max_attempts,
                    idempotency_key=key,
                    available_at=timezone.now(),
                )
                if job_kind == JobKind.VIDEO:
                    self.steps.plan(job.id, validated)
                self.publisher.publish(
                    job.id,
                    EventType.JOB_ENQUEUED,
                    f"{job_type.label} job queued",
                    {"jobType": job_type.value, "orderId": str(order.id)},
                )
        except IntegrityError:
            # Lost an insert race on idempotency_key: the reservation rolled back
            existing = self.jobs.find_by_key(key)
            if existing is None:
                raise
            return self._deduplicated(existing)

        logger.info(
            "Enqueued %s job %s for brand %s (order=%s, key=%s)",
            job_type.value,
            job.id,
            brand_id,
            order.id,
            key,
        )
        return EnqueueResult(job_id=job.id, order_id=order.id, job_type=job_type.value, created=True)

    def _deduplicated(self, job: "Job") -> EnqueueResult:
        logger.info("Deduplicated enqueue onto existing job %s (%s)", job.id, job.idempotency_key)
        return EnqueueResult(
            job_id=job.id,
            order_id=job.order_id,
            job_type=job.job_type,
            created=False,
        )

    def _resolve_order(self, user_id, brand_id, kind: JobKind, order_id, validated):
        if order_id:
            parsed = _parse_uuid(order_id)
            order = self.orders.get_owned(user_id, parsed) if parsed else None
            if order is None:
                raise OrderNotFoundError(f"Order {order_id} not found")
            return order

        name = validated.campaign_name or f"Chat_{kind.value}_{timezone.now():%Y%m%d%H%M%S}"
        return self.orders.create(user_id, brand_id, name)

    # -------------------------------------------------------------------------
    # Worker side
    # -------------------------------------------------------------------------

    def claim_next(self, worker_id: str | None = None, now: datetime | None = None) -> ClaimResult:
        """
        Claim the next available job.

        1. Find the oldest row WHERE status IN (queued, retrying) AND available_at <= now
        2. Conditionally update it to processing with this worker's lease
        3. Zero rows updated means another worker won; report and let the
           poll loop come back
        """
        if worker_id is None:
            worker_id = default_worker_id()
        now = now or timezone.now()

        with transaction.atomic():
            candidate = self.jobs.next_candidate(now)
            if candidate is None:
                return ClaimResult(job=None, claimed=False, reason="No available jobs")

            if not self.try_claim(candidate.id, worker_id, now):
                return ClaimResult(job=None, claimed=False, reason="Job claimed by another worker")

            job = self.jobs.get(candidate.id)
            self.publisher.publish(
                job.id,
                EventType.JOB_CLAIMED,
                f"Claimed by {worker_id}",
                {"workerId": worker_id, "attempts": job.attempts},
            )

        logger.info(
            "JOB_CLAIMED job_id=%s job_type=%s attempts=%d/%d worker=%s",
            job.id,
            job.job_type,
            job.attempts,
            job.max_attempts,
            worker_id,
        )
        return ClaimResult(job=job, claimed=True)

    def try_claim(self, job_id: UUID, worker_id: str, now: datetime | None = None) -> bool:
        """The claim primitive: a single conditional UPDATE; True if this worker won."""
        now = now or timezone.now()
        return self.jobs.update_if(
            job_id,
            {"status__in": CLAIMABLE_JOB_STATUSES, "available_at__lte": now},
            status=JobStatus.PROCESSING,
            locked_by=worker_id,
            locked_at=now,
            lease_expires_at=now + timedelta(seconds=self.config.lease_seconds),
            started_at=now,
            updated_at=now,
        )

    def _held_by(self, worker_id: str) -> dict[str, Any]:
        return {"status": JobStatus.PROCESSING, "locked_by": worker_id}

    def holds_lease(self, job_id: UUID, worker_id: str) -> bool:
        job = self.jobs.get(job_id)
        return (
            job is not None
            and job.status == JobStatus.PROCESSING
            and job.locked_by == worker_id
        )

    def is_canceled(self, job_id: UUID) -> bool:
        job = self.jobs.get(job_id)
        return job is not None and job.status == JobStatus.CANCELED

    def complete(self, job_id: UUID, worker_id: str, result: dict[str, Any] | None = None) -> bool:
        """
        Mark a job done.

        Returns:
            True if updated, False if the worker no longer holds the job.
        """
        now = timezone.now()
        if not self.jobs.update_if(
            job_id,
            self._held_by(worker_id),
            status=JobStatus.DONE,
            result=result or {},
            error=None,
            finished_at=now,
            updated_at=now,
            **_RELEASED_LOCK,
        ):
            logger.warning("Cannot complete job %s: not held by worker %s", job_id, worker_id)
            return False

        logger.info("JOB_DONE job_id=%s worker=%s", job_id, worker_id)
        self.publisher.publish(job_id, EventType.JOB_COMPLETED, "Job completed", {"result": result or {}})
        self.roll_up_order(self.jobs.get(job_id).order_id)
        return True

    def fail(
        self,
        job_id: UUID,
        worker_id: str,
        error: str,
        *,
        terminal: bool = False,
    ) -> str | None:
        """
        Record a failed attempt.

        If attempts + 1 < max_attempts (and not terminal):
        - status -> retrying, available_at pushed out by backoff
        Otherwise:
        - status -> error permanently

        Returns:
            "retrying", "error", or None if the worker no longer holds the job.
        """
        job = self.jobs.get(job_id)
        if job is None or job.status != JobStatus.PROCESSING or job.locked_by != worker_id:
            logger.warning("Cannot fail job %s: not held by worker %s", job_id, worker_id)
            return None

        now = timezone.now()
        attempts = job.attempts + 1
        message = truncate_error(error)

        if terminal or attempts >= job.max_attempts:
            outcome = JobStatus.ERROR
            changes = {"status": JobStatus.ERROR, "finished_at": now}
        else:
            outcome = JobStatus.RETRYING
            delay = self.backoff_delay(attempts)
            changes = {
                "status": JobStatus.RETRYING,
                "available_at": now + timedelta(seconds=delay),
            }

        if not self.jobs.update_if(
            job_id,
            {**self._held_by(worker_id), "attempts": job.attempts},
            attempts=attempts,
            error=message,
            updated_at=now,
            **_RELEASED_LOCK,
            **changes,
        ):
            logger.warning("Lost job %s while recording failure", job_id)
            return None

        if outcome == JobStatus.ERROR:
            logger.warning(
                "JOB_ERROR job_id=%s attempts=%d/%d error=%s",
                job_id,
                attempts,
                job.max_attempts,
                message[:200],
            )
            self.publisher.publish(
                job_id,
                EventType.JOB_FAILED,
                message,
                {"attempts": attempts, "maxAttempts": job.max_attempts},
            )
            self.roll_up_order(job.order_id)
        else:
            logger.info(
                "JOB_RETRY job_id=%s attempts=%d/%d available_at=%s error=%s",
                job_id,
                attempts,
                job.max_attempts,
                changes["available_at"].isoformat(),
                message[:200],
            )
            self.publisher.publish(
                job_id,
                EventType.JOB_RETRYING,
                message,
                {
                    "attempts": attempts,
                    "maxAttempts": job.max_attempts,
                    "availableAt": changes["available_at"].isoformat(),
                },
            )
        return outcome.value

    def defer(self, job_id: UUID, worker_id: str, delay_s: int, reason: str = "") -> bool:
        """
        Release a held job back to retrying without spending a job attempt.

        Used when a pipeline step failed but still has step attempts left.
        """
        now = timezone.now()
        available_at = now + timedelta(seconds=delay_s)
        if not self.jobs.update_if(
            job_id,
            self._held_by(worker_id),
            status=JobStatus.RETRYING,
            available_at=available_at,
            error=truncate_error(reason) if reason else None,
            updated_at=now,
            **_RELEASED_LOCK,
        ):
            return False

        logger.info(
            "JOB_RETRY job_id=%s deferred=%ds available_at=%s reason=%s",
            job_id,
            delay_s,
            available_at.isoformat(),
            reason[:200],
        )
        self.publisher.publish(
            job_id,
            EventType.JOB_RETRYING,
            reason or "Deferred",
            {"deferred": True, "availableAt": available_at.isoformat()},
        )
        return True

    def extend_lease(self, job_id: UUID, worker_id: str, *, now: datetime | None = None) -> bool:
        """
        Heartbeat: push lease_expires_at forward.

        Only succeeds while the job is processing and locked by worker_id.
        """
        now = now or timezone.now()
        extended = self.jobs.update_if(
            job_id,
            self._held_by(worker_id),
            locked_at=now,
            lease_expires_at=now + timedelta(seconds=self.config.lease_seconds),
        )
        if extended:
            logger.debug("Extended lease for job %s (worker=%s)", job_id, worker_id)
        return extended

    def release_expired_leases(self, now: datetime | None = None) -> int:
        """
        Reclaim processing jobs whose lease has expired.

        The lost execution counts as a failed attempt: the job goes to
        retrying (available immediately) or error when attempts run out.
        Steps left running by the dead worker go back to queued.

        Returns:
            Number of jobs released.
        """
        now = now or timezone.now()
        released = 0

        for job in self.jobs.expired_leases(now):
            attempts = job.attempts + 1
            exhausted = attempts >= job.max_attempts
            message = f"Lease expired (worker {job.locked_by}) after {attempts} attempt(s)"

            changes = {"status": JobStatus.ERROR, "finished_at": now} if exhausted else {
                "status": JobStatus.RETRYING,
                "available_at": now,
            }
            with transaction.atomic():
                if not self.jobs.update_if(
                    job.id,
                    {
                        "status": JobStatus.PROCESSING,
                        "locked_by": job.locked_by,
                        "lease_expires_at": job.lease_expires_at,
                    },
                    attempts=attempts,
                    error=message,
                    updated_at=now,
                    **_RELEASED_LOCK,
                    **changes,
                ):
                    continue
                self.steps.requeue_orphans(job.id)
                self.publisher.publish(
                    job.id,
                    EventType.LEASE_EXPIRED,
                    message,
                    {"workerId": job.locked_by, "attempts": attempts, "exhausted": exhausted},
                )

            logger.warning(
                "LEASE_EXPIRED job_id=%s worker=%s attempts=%d/%d next_status=%s",
                job.id,
                job.locked_by,
                attempts,
                job.max_attempts,
                changes["status"].value,
            )
            if exhausted:
                self.roll_up_order(job.order_id)
            released += 1

        return released

    def roll_up_order(self, order_id: UUID | None) -> OrderStatus | None:
        """Recompute an order's status from its jobs; None when the job has no order."""
        if order_id is None:
            return None
        status = order_status_for(self.orders.job_statuses(order_id))
        if self.orders.set_status(order_id, status):
            logger.info("Order %s is now %s", order_id, status.value)
        return status

    # -------------------------------------------------------------------------
    # Owner / operator actions
    # -------------------------------------------------------------------------

    def get_job(self, user_id: UUID, job_id: Any) -> "Job":
        parsed = _parse_uuid(job_id)
        job = self.jobs.get_owned(user_id, parsed) if parsed else None
        if job is None:
            raise JobNotFoundError(f"Job {job_id} not found")
        return job

    def unblock(self, user_id: UUID, job_ids: Iterable[Any]) -> UnblockResult:
        """
        Force the caller's jobs back to queued with attempts=0 and no error.

        Ids that are malformed, unknown or owned by someone else are
        ignored and left out of processed_ids.
        """
        parsed_ids = [p for p in (_parse_uuid(j) for j in job_ids) if p is not None]
        owned = self.jobs.owned_jobs(user_id, parsed_ids) if parsed_ids else []
        if not owned:
            return UnblockResult(updated=0, blocked_reset=0, processed_ids=[])

        blocked_reset = sum(1 for job in owned if job.status == JobStatus.BLOCKED)
        now = timezone.now()

        with transaction.atomic():
            updated = self.jobs.update_many(
                [job.id for job in owned],
                status=JobStatus.QUEUED,
                attempts=0,
                error=None,
                available_at=now,
                finished_at=None,
                updated_at=now,
                **_RELEASED_LOCK,
            )
            for job in owned:
                self.steps.reset_for_unblock(job.id)
                self.publisher.publish(
                    job.id,
                    EventType.JOB_UNBLOCKED,
                    f"Unblocked from {job.status}",
                    {"previousStatus": job.status},
                )
            for order_id in {job.order_id for job in owned}:
                self.roll_up_order(order_id)

        logger.info(
            "Unblocked %d job(s) for user %s (%d were blocked)",
            updated,
            user_id,
            blocked_reset,
        )
        return UnblockResult(
            updated=updated,
            blocked_reset=blocked_reset,
            processed_ids=[str(job.id) for job in owned],
        )

    def cancel(self, user_id: UUID, job_id: Any) -> bool:
        """
        Cancel one of the caller's jobs.

        Returns False if the job had already reached a terminal status. The
        quota reserved at admission is given back. A worker mid-step notices
        at its next checkpoint and discards its work.
        """
        job = self.get_job(user_id, job_id)
        now = timezone.now()

        with transaction.atomic():
            if not self.jobs.update_if(
                job.id,
                {"status__in": NON_TERMINAL_JOB_STATUSES},
                status=JobStatus.CANCELED,
                finished_at=now,
                updated_at=now,
                **_RELEASED_LOCK,
            ):
                return False
            self.steps.skip_remaining(job.id, CANCELED_SKIP_REASON)
            self.ledger.refund_for_job(job.brand_id, job.kind, parse_payload(job.kind, job.payload))
            self.publisher.publish(
                job.id,
                EventType.JOB_CANCELED,
                "Job canceled",
                {"previousStatus": job.status},
            )
            self.roll_up_order(job.order_id)

        logger.info("Canceled job %s (was %s)", job.id, job.status)
        return True

    def retry_step(self, user_id: UUID, job_id: Any, step_id: Any) -> "JobStep":
        """
        Reset one step of the caller's job and requeue the job.

        Completed steps are never re-executed: retrying one is an error. The
        job keeps its attempt count; only unblock resets it.

        Raises:
            JobNotFoundError: job or step not found for this caller
            StepTransitionError: job done/canceled/processing or step not retryable
        """
        job = self.get_job(user_id, job_id)
        if job.status == JobStatus.CANCELED:
            raise StepTransitionError("Job is canceled; unblock it first")
        if job.status == JobStatus.PROCESSING:
            raise StepTransitionError("Job is being processed; retry once the attempt ends")

        parsed_step_id = _parse_uuid(step_id)
        step = self.steps.get(job.id, parsed_step_id) if parsed_step_id else None
        if step is None:
            raise JobNotFoundError(f"Step {step_id} not found")

        now = timezone.now()
        with transaction.atomic():
            self.steps.retry(step)
            if not self.jobs.update_if(
                job.id,
                {"status__in": STEP_RETRY_REQUEUE_STATUSES},
                status=JobStatus.QUEUED,
                error=None,
                available_at=now,
                finished_at=None,
                updated_at=now,
            ):
                raise StepTransitionError(f"Job is {job.status}; unblock it to run it again")
            self.roll_up_order(job.order_id)

        logger.info("Retry requested for step %s of job %s", step.id, job.id)
        return step
