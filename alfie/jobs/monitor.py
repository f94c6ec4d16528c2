"""
Queue monitor: a read-only diagnostic view for operators.

- counts by status
- backlog: age of the oldest queued job
- stuck: processing jobs locked longer than the threshold
- completed in the last 24 hours
- the most recent jobs with their retry counters
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any

from django.utils import timezone

from alfie.core.enums import JobStatus

from .stores import JobStore

logger = logging.getLogger(__name__)

DEFAULT_STUCK_THRESHOLD_S = 300
RECENT_JOBS_LIMIT = 15


class QueueMonitor:
    def __init__(self, jobs: JobStore, stuck_threshold_s: int = DEFAULT_STUCK_THRESHOLD_S):
        self.jobs = jobs
        self.stuck_threshold_s = stuck_threshold_s

    def summary(self, now: datetime | None = None) -> dict[str, Any]:
        now = now or timezone.now()
        counts = {status: 0 for status in JobStatus.values}
        counts.update(self.jobs.status_counts())

        oldest = self.jobs.oldest_created_at(JobStatus.QUEUED)
        backlog_s = max(0, int((now - oldest).total_seconds())) if oldest else 0

        stuck = self.jobs.count_stuck(now - timedelta(seconds=self.stuck_threshold_s))
        if stuck:
            logger.warning(
                "%d job(s) processing for more than %ds",
                stuck,
                self.stuck_threshold_s,
            )

        return {
            "counts": counts,
            "backlogSeconds": backlog_s,
            "stuck": stuck,
            "stuckThresholdSeconds": self.stuck_threshold_s,
            "completed24h": self.jobs.count_finished_since(
                JobStatus.DONE, now - timedelta(hours=24)
            ),
            "recent": [
                {
                    "id": str(job.id),
                    "jobType": job.job_type,
                    "status": job.status,
                    "retry": f"{job.attempts}/{job.max_attempts}",
                    "error": job.error,
                    "createdAt": job.created_at.isoformat(),
                    "updatedAt": job.updated_at.isoformat(),
                }
                for job in self.jobs.recent(RECENT_JOBS_LIMIT)
            ],
        }
