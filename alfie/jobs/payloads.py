"""
Job payload schemas.

A closed set of tagged variants, validated at the admission boundary.
Unknown fields are ignored; the idempotency key is computed over the
validated model, so two requests that only differ in ignored fields are
the same request.
"""

from __future__ import annotations

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from alfie.core.enums import JobKind, QualityTier

from .exceptions import PayloadValidationError

# Admission-time caps
MAX_IMAGES_PER_JOB = 10
MAX_CAROUSEL_SLIDES = 10
MAX_VIDEO_SCENES = 12
MAX_SCENE_SECONDS = 60

DEFAULT_SCENE_SECONDS = 8
DEFAULT_VIDEO_RATIO = "9:16"
DEFAULT_VOICE_LANGUAGE = "fr"


class _PayloadBase(BaseModel):
    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)

    quality: QualityTier = QualityTier.STANDARD
    style: str | None = None
    use_case: str = "general"
    campaign_name: str | None = Field(default=None, max_length=255)


class ImagePayload(_PayloadBase):
    """Single prompt rendered into one or more images."""

    kind: Literal["image"] = "image"
    prompt: str = Field(min_length=1)
    format: str = "1024x1024"
    count: int = Field(default=1, ge=1, le=MAX_IMAGES_PER_JOB)
    reference_image_url: str | None = None

    @property
    def image_count(self) -> int:
        return self.count


class CarouselSlide(BaseModel):
    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)

    title: str = ""
    body: str = ""
    image_prompt: str | None = None


class CarouselPayload(_PayloadBase):
    """Multi-slide carousel; each slide renders one image."""

    kind: Literal["carousel"] = "carousel"
    prompt: str = Field(min_length=1)
    format: str = "1080x1350"
    slides: list[CarouselSlide] = Field(min_length=1, max_length=MAX_CAROUSEL_SLIDES)

    @property
    def image_count(self) -> int:
        return len(self.slides)


class VideoScene(BaseModel):
    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)

    visual_prompt: str = Field(min_length=1)
    text: str | None = None
    duration_seconds: int = Field(default=DEFAULT_SCENE_SECONDS, ge=1, le=MAX_SCENE_SECONDS)


class VideoPayload(_PayloadBase):
    """Scene-by-scene video, planned into a step pipeline."""

    kind: Literal["video"] = "video"
    scenes: list[VideoScene] = Field(min_length=1, max_length=MAX_VIDEO_SCENES)
    ratio: Literal["9:16", "16:9", "1:1", "4:5"] = DEFAULT_VIDEO_RATIO
    format: str = "1080x1920"
    global_voiceover: str | None = None
    voice_id: str | None = None
    language: str = DEFAULT_VOICE_LANGUAGE
    music_prompt: str | None = None

    @property
    def total_duration_seconds(self) -> int:
        return sum(scene.duration_seconds for scene in self.scenes)


JobPayload = Annotated[
    Union[ImagePayload, CarouselPayload, VideoPayload],
    Field(discriminator="kind"),
]

_payload_adapter: TypeAdapter = TypeAdapter(JobPayload)


def parse_payload(kind: str, raw: Any) -> ImagePayload | CarouselPayload | VideoPayload:
    """
    Validate a raw request payload against the variant for `kind`.

    Raises:
        PayloadValidationError: kind unknown, payload not an object, or
            fields invalid. `errors` lists {"loc", "msg"} per problem.
    """
    if kind not in JobKind.values:
        raise PayloadValidationError(f"Unknown job kind: {kind!r}")
    if not isinstance(raw, dict):
        raise PayloadValidationError("Payload must be a JSON object")

    try:
        return _payload_adapter.validate_python({**raw, "kind": kind})
    except ValidationError as e:
        errors = [
            {
                "loc": ".".join(str(part) for part in err["loc"][1:] or err["loc"]),
                "msg": err["msg"],
            }
            for err in e.errors()
        ]
        summary = "; ".join(f"{err['loc']}: {err['msg']}" for err in errors[:5])
        raise PayloadValidationError(f"Invalid {kind} payload: {summary}", errors=errors) from e
