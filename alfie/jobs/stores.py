"""
Repository interfaces for the job subsystem and their Django ORM backing.

The queue, step machine and event publisher receive these by constructor
injection (see alfie.jobs.services.build_orchestrator); nothing in the
orchestration layer reaches for a module-level client.

Every state transition here is a single conditional UPDATE
(`filter(<expected state>).update(...)`): the returned row count tells the
caller whether it won. No SELECT FOR UPDATE, so SQLite behaves like Postgres.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any, Iterable, Protocol
from uuid import UUID

from django.db.models import Count, Exists, Min, OuterRef

from alfie.core.enums import CLAIMABLE_JOB_STATUSES, JobStatus, StepStatus

if TYPE_CHECKING:
    from alfie.core.models import Order
    from alfie.jobs.models import Job, JobEvent, JobStep


# =============================================================================
# INTERFACES
# =============================================================================


class JobStore(Protocol):
    def get(self, job_id: UUID) -> "Job | None": ...
    def get_owned(self, user_id: UUID, job_id: UUID) -> "Job | None": ...
    def find_by_key(self, idempotency_key: str) -> "Job | None": ...
    def insert(self, **fields: Any) -> "Job": ...
    def next_candidate(self, now: datetime) -> "Job | None": ...
    def update_if(self, job_id: UUID, expected: dict[str, Any], **changes: Any) -> bool: ...
    def expired_leases(self, now: datetime) -> list["Job"]: ...
    def owned_jobs(self, user_id: UUID, job_ids: Iterable[UUID]) -> list["Job"]: ...
    def update_many(self, job_ids: Iterable[UUID], **changes: Any) -> int: ...
    def status_counts(self) -> dict[str, int]: ...
    def oldest_created_at(self, status: str) -> datetime | None: ...
    def count_stuck(self, locked_before: datetime) -> int: ...
    def count_finished_since(self, status: str, since: datetime) -> int: ...
    def recent(self, limit: int) -> list["Job"]: ...


class StepStore(Protocol):
    def create_many(self, job_id: UUID, steps: list[dict[str, Any]]) -> list["JobStep"]: ...
    def list_for_job(self, job_id: UUID) -> list["JobStep"]: ...
    def get_for_job(self, job_id: UUID, step_id: UUID) -> "JobStep | None": ...
    def update_if(self, step_id: UUID, expected_statuses: Iterable[str], **changes: Any) -> bool: ...
    def start_if_idle(self, step_id: UUID, now: datetime) -> bool: ...
    def bulk_set_status(self, job_id: UUID, from_statuses: Iterable[str], **changes: Any) -> int: ...


class EventStore(Protocol):
    def append(
        self,
        job_id: UUID,
        event_type: str,
        message: str,
        metadata: dict[str, Any],
        step_id: UUID | None = None,
    ) -> "JobEvent": ...
    def recent(self, job_id: UUID, limit: int) -> list["JobEvent"]: ...


class OrderStore(Protocol):
    def get_owned(self, user_id: UUID, order_id: UUID) -> "Order | None": ...
    def create(self, user_id: UUID, brand_id: UUID, campaign_name: str) -> "Order": ...
    def job_statuses(self, order_id: UUID) -> list[str]: ...
    def set_status(self, order_id: UUID, status: str) -> bool: ...


# =============================================================================
# DJANGO IMPLEMENTATIONS
# =============================================================================


class DjangoJobStore:
    """Job rows in the relational store."""

    def get(self, job_id):
        from alfie.jobs.models import Job

        return Job.objects.filter(id=job_id).first()

    def get_owned(self, user_id, job_id):
        from alfie.jobs.models import Job

        return Job.objects.filter(id=job_id, user_id=user_id).first()

    def find_by_key(self, idempotency_key):
        from alfie.jobs.models import Job

        return Job.objects.filter(idempotency_key=idempotency_key).first()

    def insert(self, **fields):
        """Plain INSERT; a duplicate idempotency_key raises IntegrityError."""
        from alfie.jobs.models import Job

        return Job.objects.create(**fields)

    def next_candidate(self, now):
        from alfie.jobs.models import Job

        # FIFO by creation among rows whose backoff has elapsed
        return (
            Job.objects
            .filter(status__in=CLAIMABLE_JOB_STATUSES, available_at__lte=now)
            .order_by("created_at", "id")
            .first()
        )

    def update_if(self, job_id, expected, **changes):
        from alfie.jobs.models import Job

        return Job.objects.filter(id=job_id, **expected).update(**changes) == 1

    def expired_leases(self, now):
        from alfie.jobs.models import Job

        return list(
            Job.objects.filter(
                status=JobStatus.PROCESSING,
                lease_expires_at__lt=now,
            ).order_by("lease_expires_at")
        )

    def owned_jobs(self, user_id, job_ids):
        from alfie.jobs.models import Job

        return list(Job.objects.filter(user_id=user_id, id__in=list(job_ids)))

    def update_many(self, job_ids, **changes):
        from alfie.jobs.models import Job

        return Job.objects.filter(id__in=list(job_ids)).update(**changes)

    def status_counts(self):
        from alfie.jobs.models import Job

        rows = Job.objects.values("status").annotate(total=Count("id")).order_by()
        return {row["status"]: row["total"] for row in rows}

    def oldest_created_at(self, status):
        from alfie.jobs.models import Job

        return Job.objects.filter(status=status).aggregate(oldest=Min("created_at"))["oldest"]

    def count_stuck(self, locked_before):
        from alfie.jobs.models import Job

        return Job.objects.filter(
            status=JobStatus.PROCESSING,
            locked_at__lt=locked_before,
        ).count()

    def count_finished_since(self, status, since):
        from alfie.jobs.models import Job

        return Job.objects.filter(status=status, finished_at__gte=since).count()

    def recent(self, limit):
        from alfie.jobs.models import Job

        return list(Job.objects.order_by("-created_at")[:limit])


class DjangoStepStore:
    """JobStep rows in the relational store."""

    def create_many(self, job_id, steps):
        from alfie.jobs.models import JobStep

        return JobStep.objects.bulk_create(
            [JobStep(job_id=job_id, **step) for step in steps]
        )

    def list_for_job(self, job_id):
        from alfie.jobs.models import JobStep

        return list(JobStep.objects.filter(job_id=job_id).order_by("step_index"))

    def get_for_job(self, job_id, step_id):
        from alfie.jobs.models import JobStep

        return JobStep.objects.filter(job_id=job_id, id=step_id).first()

    def update_if(self, step_id, expected_statuses, **changes):
        from alfie.jobs.models import JobStep

        return JobStep.objects.filter(
            id=step_id,
            status__in=list(expected_statuses),
        ).update(**changes) == 1

    def start_if_idle(self, step_id, now):
        """
        queued -> running, only while no sibling step is running.

        The sibling check lives in the same UPDATE statement.
        """
        from alfie.jobs.models import JobStep

        sibling_running = JobStep.objects.filter(
            job_id=OuterRef("job_id"),
            status=StepStatus.RUNNING,
        )
        return JobStep.objects.filter(
            id=step_id,
            status=StepStatus.QUEUED,
        ).filter(
            ~Exists(sibling_running)
        ).update(
            status=StepStatus.RUNNING,
            started_at=now,
            finished_at=None,
            updated_at=now,
        ) == 1

    def bulk_set_status(self, job_id, from_statuses, **changes):
        from alfie.jobs.models import JobStep

        return JobStep.objects.filter(
            job_id=job_id,
            status__in=list(from_statuses),
        ).update(**changes)


class DjangoEventStore:
    """Append-only JobEvent rows."""

    def append(self, job_id, event_type, message, metadata, step_id=None):
        from alfie.jobs.models import JobEvent

        return JobEvent.objects.create(
            job_id=job_id,
            step_id=step_id,
            event_type=event_type,
            message=message,
            metadata=metadata,
        )

    def recent(self, job_id, limit):
        """Last `limit` events, oldest first."""
        from alfie.jobs.models import JobEvent

        latest = list(
            JobEvent.objects.filter(job_id=job_id).order_by("-created_at", "-id")[:limit]
        )
        latest.reverse()
        return latest


class DjangoOrderStore:
    def get_owned(self, user_id, order_id):
        from alfie.core.models import Order

        return Order.objects.filter(id=order_id, user_id=user_id).first()

    def create(self, user_id, brand_id, campaign_name):
        from alfie.core.models import Order

        return Order.objects.create(
            user_id=user_id,
            brand_id=brand_id,
            campaign_name=campaign_name[:255],
        )

    def job_statuses(self, order_id):
        from alfie.jobs.models import Job

        return list(Job.objects.filter(order_id=order_id).values_list("status", flat=True))

    def set_status(self, order_id, status):
        """True only if the order actually changed status."""
        from django.utils import timezone

        from alfie.core.models import Order

        return Order.objects.filter(id=order_id).exclude(status=status).update(
            status=status,
            updated_at=timezone.now(),
        ) == 1
