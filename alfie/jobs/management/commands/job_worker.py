"""
Media job worker.

Usage:
    python manage.py job_worker
    python manage.py job_worker --once
    python manage.py job_worker --max-jobs 50 --poll-interval 0.5

Each cycle: sweep expired leases (every --lease-check-interval seconds),
claim the oldest available job, run it while a heartbeat thread keeps the
lease alive, report the outcome. Idle cycles sleep --poll-interval.

Workers share nothing but the database; start as many as needed. SIGINT /
SIGTERM finish the current job and exit.
"""

from __future__ import annotations

import logging
import signal
import threading
import time

from django.conf import settings
from django.core.management.base import BaseCommand

from alfie.core.enums import JobStatus
from alfie.jobs.queue import default_worker_id
from alfie.jobs.runner import DEFERRED, DISCARDED, DONE
from alfie.jobs.services import build_orchestrator

logger = logging.getLogger(__name__)

SOFT_OUTCOMES = (DEFERRED, DISCARDED, JobStatus.RETRYING)


class LeaseHeartbeat:
    """Extends a claimed job's lease from a daemon thread while the job runs."""

    def __init__(self, queue, job_id, worker_id: str, interval_s: float):
        self.queue = queue
        self.job_id = job_id
        self.worker_id = worker_id
        self.interval_s = interval_s
        self._stop = threading.Event()
        self._thread = threading.Thread(target=self._beat, name=f"lease-{job_id}", daemon=True)

    def __enter__(self):
        self._thread.start()
        return self

    def __exit__(self, *exc_info):
        self._stop.set()
        self._thread.join(timeout=1.0)

    def _beat(self):
        while not self._stop.wait(self.interval_s):
            try:
                if not self.queue.extend_lease(self.job_id, self.worker_id):
                    logger.warning("Lease for job %s is gone; heartbeat stopped", self.job_id)
                    return
            except Exception:
                logger.exception("Heartbeat failed for job %s", self.job_id)


class Command(BaseCommand):
    help = "Claim and run queued media generation jobs"

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.worker_id = default_worker_id()
        self._stopping = False

    def add_arguments(self, parser):
        parser.add_argument(
            "--poll-interval",
            type=float,
            help="Seconds to sleep after an empty poll (default: ALFIE_WORKER_POLL_INTERVAL_S)",
        )
        parser.add_argument(
            "--lease-check-interval",
            type=int,
            help="Seconds between expired lease sweeps (default: ALFIE_LEASE_CHECK_INTERVAL_S)",
        )
        parser.add_argument(
            "--max-jobs",
            type=int,
            default=0,
            help="Exit after this many jobs (0 = run until stopped)",
        )
        parser.add_argument(
            "--once",
            action="store_true",
            help="Run a single poll cycle and exit",
        )
        parser.add_argument(
            "--dry-run",
            action="store_true",
            help="Claim jobs and mark them done without running handlers",
        )

    def handle(self, *args, **options):
        poll_interval = options["poll_interval"] or settings.ALFIE_WORKER_POLL_INTERVAL_S
        sweep_interval = options["lease_check_interval"] or settings.ALFIE_LEASE_CHECK_INTERVAL_S
        max_jobs = options["max_jobs"]
        dry_run = options["dry_run"]

        for signum in (signal.SIGINT, signal.SIGTERM):
            signal.signal(signum, self._request_stop)

        self.orchestrator = build_orchestrator(with_runner=not dry_run)

        self.stdout.write(f"Starting job worker: {self.worker_id}")
        self.stdout.write(f"  Poll interval: {poll_interval}s, lease sweep every {sweep_interval}s")
        if dry_run:
            self.stdout.write(self.style.WARNING("  DRY RUN MODE: claimed jobs are marked done unexecuted"))

        processed = 0
        next_sweep = 0.0

        while not self._stopping:
            job = None
            try:
                if time.monotonic() >= next_sweep:
                    self._sweep_expired_leases()
                    next_sweep = time.monotonic() + sweep_interval

                job = self._claim()
                if job is not None:
                    self._process(job, dry_run)
                    processed += 1
            except Exception:
                # A job left processing here is reclaimed when its lease expires
                logger.exception("Worker %s poll cycle failed", self.worker_id)
                self.stderr.write(f"Poll cycle failed; retrying in {poll_interval}s")
                job = None

            if job is not None and max_jobs and processed >= max_jobs:
                self.stdout.write(f"Exiting after {max_jobs} job(s) (--max-jobs)")
                break

            if options["once"]:
                self.stdout.write("Exiting after one poll cycle (--once)")
                break

            if job is None:
                time.sleep(poll_interval)

        if self._stopping:
            self.stdout.write("Stopped on signal")
        self.stdout.write(f"Worker exiting. Jobs processed: {processed}")

    def _request_stop(self, signum, frame):
        self.stdout.write(f"\n{signal.Signals(signum).name} received, finishing current job")
        self._stopping = True

    def _sweep_expired_leases(self) -> None:
        released = self.orchestrator.queue.release_expired_leases()
        if released:
            self.stdout.write(f"Released {released} expired lease(s)")

    def _claim(self):
        claim = self.orchestrator.queue.claim_next(worker_id=self.worker_id)
        if not claim.claimed:
            return None
        job = claim.job
        self.stdout.write(
            f"Claimed job {job.id} ({job.job_type}, brand={job.brand_id}, "
            f"attempt {job.attempts + 1}/{job.max_attempts})"
        )
        return job

    def _process(self, job, dry_run: bool) -> None:
        if dry_run:
            self.stdout.write("  [DRY RUN] Skipping execution")
            self.orchestrator.queue.complete(job.id, self.worker_id, {"dryRun": True})
            return

        with LeaseHeartbeat(
            self.orchestrator.queue,
            job.id,
            self.worker_id,
            settings.ALFIE_JOB_HEARTBEAT_S,
        ):
            result = self.orchestrator.runner.run_job(job, self.worker_id)

        if result.outcome == DONE:
            self.stdout.write(self.style.SUCCESS(f"  Job {job.id} done in {result.duration_ms}ms"))
        elif result.outcome in SOFT_OUTCOMES:
            self.stdout.write(self.style.WARNING(f"  Job {job.id} {result.outcome}: {result.error or ''}"))
        else:
            self.stdout.write(self.style.ERROR(f"  Job {job.id} {result.outcome}: {(result.error or '')[:100]}"))
