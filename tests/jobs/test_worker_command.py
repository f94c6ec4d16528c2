"""
job_worker management command tests.

The worker is driven through call_command with --once / --max-jobs so the
loop terminates; the generation backend is the in-memory fake.
"""

from __future__ import annotations

from datetime import timedelta
from io import StringIO
from unittest.mock import patch

import pytest
from django.core.management import call_command
from django.utils import timezone

from alfie.core.enums import JobStatus
from alfie.jobs.models import Job

BUILD_PATH = "alfie.jobs.management.commands.job_worker.build_orchestrator"


@pytest.fixture
def fake_orchestrator(db, fake_backend):
    """Patch the worker's wiring to use the fake backend."""
    from alfie.jobs.services import build_orchestrator

    with patch(BUILD_PATH, lambda **kwargs: build_orchestrator(backend_client=fake_backend)):
        yield


def _enqueue(user, brand, prompt="a red fox"):
    from alfie.jobs.services import build_orchestrator

    return build_orchestrator().queue.enqueue(
        user_id=user.id,
        brand_id=brand.id,
        kind="image",
        payload={"prompt": prompt},
    ).job_id


def _run_worker(*args):
    out = StringIO()
    call_command("job_worker", *args, stdout=out)
    return out.getvalue()


@pytest.mark.db
class TestJobWorkerCommand:
    """Poll loop, exit conditions and lease sweeping."""

    def test_once_with_empty_queue(self, db, fake_orchestrator):
        output = _run_worker("--once")

        assert "Starting job worker:" in output
        assert "Exiting after one poll cycle (--once)" in output
        assert "Jobs processed: 0" in output

    def test_once_runs_one_job(self, db, fake_orchestrator, fake_backend, user, brand):
        first = _enqueue(user, brand, "first")
        second = _enqueue(user, brand, "second")
        Job.objects.filter(id=first).update(created_at=timezone.now() - timedelta(minutes=1))

        output = _run_worker("--once")

        assert f"Claimed job {first}" in output
        assert "Jobs processed: 1" in output
        assert Job.objects.get(id=first).status == JobStatus.DONE
        assert Job.objects.get(id=second).status == JobStatus.QUEUED
        assert fake_backend.tasks() == ["image"]

    def test_max_jobs(self, db, fake_orchestrator, user, brand):
        for prompt in ("one", "two", "three"):
            _enqueue(user, brand, prompt)

        output = _run_worker("--max-jobs", "2")

        assert "Exiting after 2 job(s) (--max-jobs)" in output
        assert Job.objects.filter(status=JobStatus.DONE).count() == 2
        assert Job.objects.filter(status=JobStatus.QUEUED).count() == 1

    def test_failed_job_reported(self, db, fake_orchestrator, fake_backend, user, brand):
        fake_backend.failures["image"] = 1
        job_id = _enqueue(user, brand)

        output = _run_worker("--once")

        assert f"Job {job_id} retrying" in output
        assert Job.objects.get(id=job_id).status == JobStatus.RETRYING

    def test_dry_run_skips_execution(self, db, fake_backend, user, brand):
        job_id = _enqueue(user, brand)

        output = _run_worker("--once", "--dry-run")

        assert "DRY RUN MODE" in output
        assert "[DRY RUN] Skipping execution" in output
        job = Job.objects.get(id=job_id)
        assert job.status == JobStatus.DONE
        assert job.result == {"dryRun": True}
        assert fake_backend.calls == []

    def test_expired_lease_swept_on_start(self, db, user, brand):
        """A job held by a dead worker is reclaimed and picked up again."""
        from alfie.jobs.services import build_orchestrator

        job_id = _enqueue(user, brand)
        build_orchestrator().queue.claim_next("dead-worker")
        Job.objects.filter(id=job_id).update(lease_expires_at=timezone.now() - timedelta(minutes=1))

        output = _run_worker("--once", "--dry-run")

        assert "Released 1 expired lease(s)" in output
        job = Job.objects.get(id=job_id)
        assert job.status == JobStatus.DONE
        assert job.attempts == 1

    def test_database_error_does_not_end_loop(self, db, fake_orchestrator, user, brand):
        """A failed poll cycle is logged and the next cycle claims normally."""
        from django.db import OperationalError

        from alfie.jobs.queue import JobQueue

        job_id = _enqueue(user, brand)
        real_claim = JobQueue.claim_next
        calls = []

        def flaky_claim(queue, *args, **kwargs):
            calls.append(1)
            if len(calls) == 1:
                raise OperationalError("database is locked")
            return real_claim(queue, *args, **kwargs)

        err = StringIO()
        with patch.object(JobQueue, "claim_next", flaky_claim), patch(
            "alfie.jobs.management.commands.job_worker.time.sleep"
        ) as sleep:
            out = StringIO()
            call_command("job_worker", "--max-jobs", "1", stdout=out, stderr=err)

        assert "Poll cycle failed" in err.getvalue()
        assert sleep.call_count == 1
        assert "Exiting after 1 job(s) (--max-jobs)" in out.getvalue()
        assert Job.objects.get(id=job_id).status == JobStatus.DONE
