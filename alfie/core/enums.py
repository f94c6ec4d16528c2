"""
Alfie domain enums.

All enums are defined as Django TextChoices for database storage as lowercase
strings. Pydantic v2 accepts them directly since they subclass str.
"""

from django.db import models


class JobKind(models.TextChoices):
    """What a job generates."""
    IMAGE = "image", "Image"
    CAROUSEL = "carousel", "Carousel"
    VIDEO = "video", "Video"


class JobType(models.TextChoices):
    """Worker routing name for a job kind."""
    RENDER_IMAGES = "render_images", "Render Images"
    RENDER_CAROUSELS = "render_carousels", "Render Carousels"
    GENERATE_VIDEO = "generate_video", "Generate Video"


JOB_TYPE_BY_KIND = {
    JobKind.IMAGE: JobType.RENDER_IMAGES,
    JobKind.CAROUSEL: JobType.RENDER_CAROUSELS,
    JobKind.VIDEO: JobType.GENERATE_VIDEO,
}


class JobStatus(models.TextChoices):
    """
    Job lifecycle.

    queued/retrying -> processing -> done | error | canceled
    blocked is set by operators and only left through unblock.
    """
    QUEUED = "queued", "Queued"
    RETRYING = "retrying", "Retrying"
    PROCESSING = "processing", "Processing"
    DONE = "done", "Done"
    ERROR = "error", "Error"
    CANCELED = "canceled", "Canceled"
    BLOCKED = "blocked", "Blocked"


CLAIMABLE_JOB_STATUSES = (JobStatus.QUEUED, JobStatus.RETRYING)
TERMINAL_JOB_STATUSES = (JobStatus.DONE, JobStatus.ERROR, JobStatus.CANCELED)


class StepStatus(models.TextChoices):
    """Step lifecycle: pending -> queued -> running -> completed | failed | skipped."""
    PENDING = "pending", "Pending"
    QUEUED = "queued", "Queued"
    RUNNING = "running", "Running"
    COMPLETED = "completed", "Completed"
    FAILED = "failed", "Failed"
    SKIPPED = "skipped", "Skipped"


# A successor may start once its predecessor is in one of these
STEP_DONE_STATUSES = (StepStatus.COMPLETED, StepStatus.SKIPPED)


class StepType(models.TextChoices):
    """Sub-tasks of a video pipeline."""
    GEN_KEYFRAME = "gen_keyframe", "Generate Keyframe"
    ANIMATE_CLIP = "animate_clip", "Animate Clip"
    VOICEOVER = "voiceover", "Voiceover"
    MUSIC = "music", "Music"
    CONCAT_CLIPS = "concat_clips", "Concatenate Clips"
    MIX_AUDIO = "mix_audio", "Mix Audio"
    DELIVER = "deliver", "Deliver"


class QualityTier(models.TextChoices):
    """Requested output quality, drives provider scoring weights."""
    DRAFT = "draft", "Draft"
    STANDARD = "standard", "Standard"
    PREMIUM = "premium", "Premium"


class Modality(models.TextChoices):
    """Provider capability axis."""
    IMAGE = "image", "Image"
    VIDEO = "video", "Video"
    AUDIO = "audio", "Audio"


class OrderStatus(models.TextChoices):
    """
    Status of a generation order (a campaign grouping jobs), rolled up from
    its jobs whenever one of them finishes or is reopened.
    """
    IN_PROGRESS = "in_progress", "In Progress"
    COMPLETED = "completed", "Completed"
    PARTIAL = "partial", "Partial"
    FAILED = "failed", "Failed"
    CANCELED = "canceled", "Canceled"
