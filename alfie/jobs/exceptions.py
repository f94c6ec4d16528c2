"""
Exceptions raised by job admission, the queue and the step pipeline.

Views map these to JSON errors; the worker records them on the job/step.
"""

from __future__ import annotations


class JobQueueError(Exception):
    """Base class for orchestration errors."""

    code = "job_error"

    def __init__(self, message: str, *, code: str | None = None):
        if code:
            self.code = code
        super().__init__(message)


class JobNotFoundError(JobQueueError):
    """Job (or step) does not exist or is not owned by the caller."""

    code = "job_not_found"


class OrderNotFoundError(JobQueueError):
    """Explicit order id does not exist or belongs to someone else."""

    code = "order_not_found"


class StepTransitionError(JobQueueError):
    """A step state change would break pipeline ordering."""

    code = "invalid_transition"


class PayloadValidationError(JobQueueError):
    """Request payload does not match any known job variant."""

    code = "invalid_payload"

    def __init__(self, message: str, errors: list[dict] | None = None):
        self.errors = errors or []
        super().__init__(message)


class StepSkipped(Exception):
    """
    Raised by a step handler when its step has nothing to do.

    The step is marked skipped, which unblocks its successor.
    """

    def __init__(self, reason: str = ""):
        self.reason = reason
        super().__init__(reason)


# Stored error messages are capped so one runaway trace can't bloat rows
ERROR_MAX_CHARS = 2000


def truncate_error(message: str | None) -> str:
    message = message or "Unknown error"
    return message[:ERROR_MAX_CHARS]
