"""
Generation handlers.

A handler performs the external part of one unit of work: it asks the
provider selector for a back-end, calls the generation gateway and returns
the output to persist.

    job handler:   (job, payload, ctx) -> result dict   image / carousel jobs
    step handler:  (step, job, payload, ctx) -> output dict  video pipeline steps

Handlers raise on failure and the runner turns the exception into a failed
attempt. A step handler raises StepSkipped when there is nothing to do.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable

from alfie.core.enums import JobType, Modality, StepType
from alfie.integrations.backends import BackendClient, BackendError
from alfie.providers.selection import ProviderSelector, SelectionRequest
from alfie.quotas.ledger import WOOF_COSTS

from .exceptions import StepSkipped
from .steps import DEFAULT_MIX

logger = logging.getLogger(__name__)

AUDIO_FORMAT = "mp3"

# Step types that call a selectable provider, by modality
STEP_MODALITIES = {
    StepType.GEN_KEYFRAME: Modality.IMAGE,
    StepType.ANIMATE_CLIP: Modality.VIDEO,
    StepType.VOICEOVER: Modality.AUDIO,
    StepType.MUSIC: Modality.AUDIO,
}


@dataclass
class HandlerContext:
    """What a handler may touch: the gateway and the provider bandit."""

    backend: BackendClient
    selector: ProviderSelector | None = None

    def choose_provider(
        self,
        *,
        kind: str,
        modality: str,
        format: str,
        payload,
        duration_s: int | None = None,
    ) -> str | None:
        """
        Best affordable provider for this generation, or None to let the
        gateway pick its default when selection says KO.
        """
        if self.selector is None:
            return None

        request = SelectionRequest(
            brief={"use_case": payload.use_case, "style": payload.style},
            modality=modality,
            format=format,
            durationSeconds=duration_s or 1,
            quality=payload.quality,
            budgetUnits=WOOF_COSTS[kind],
        )
        decision = self.selector.select(request)
        if not decision.ok:
            logger.warning(
                "No provider selected (%s) for %s %s; using gateway default",
                decision.reason,
                modality,
                format,
            )
            return None
        return decision.provider_id

    def generate(
        self,
        task: str,
        params: dict[str, Any],
        *,
        provider: str | None,
        use_case: str,
        format: str,
    ) -> dict[str, Any]:
        """
        Call the gateway and feed the outcome back to the selected provider's stats.

        A reply without an asset url counts as a failure for the provider.
        """
        try:
            response = self.backend.generate(task, params, provider=provider)
            if not response.get("url"):
                raise BackendError(f"Generation task {task} returned no url")
        except BackendError:
            self._record(provider, use_case, format, success=False)
            raise
        self._record(provider, use_case, format, success=True)
        return response

    def _record(self, provider, use_case, format, *, success: bool) -> None:
        if provider and self.selector is not None:
            self.selector.record_outcome(provider, use_case, format, success)


# =============================================================================
# JOB HANDLERS (single-shot)
# =============================================================================


def render_images(job, payload, ctx: HandlerContext) -> dict[str, Any]:
    provider = ctx.choose_provider(
        kind=job.kind,
        modality=Modality.IMAGE,
        format=payload.format,
        payload=payload,
    )
    assets = []
    for index in range(payload.count):
        response = ctx.generate(
            "image",
            {
                "prompt": payload.prompt,
                "format": payload.format,
                "style": payload.style,
                "quality": payload.quality,
                "referenceImageUrl": payload.reference_image_url,
                "index": index,
            },
            provider=provider,
            use_case=payload.use_case,
            format=payload.format,
        )
        assets.append(response["url"])
    return {"assets": assets, "providerId": provider}


def render_carousels(job, payload, ctx: HandlerContext) -> dict[str, Any]:
    provider = ctx.choose_provider(
        kind=job.kind,
        modality=Modality.IMAGE,
        format=payload.format,
        payload=payload,
    )
    slides = []
    for index, slide in enumerate(payload.slides):
        prompt = slide.image_prompt or "\n".join(
            part for part in (payload.prompt, slide.title, slide.body) if part
        )
        response = ctx.generate(
            "image",
            {
                "prompt": prompt,
                "format": payload.format,
                "style": payload.style,
                "quality": payload.quality,
                "slideIndex": index,
            },
            provider=provider,
            use_case=payload.use_case,
            format=payload.format,
        )
        slides.append({"index": index, "title": slide.title, "url": response["url"]})
    return {
        "assets": [s["url"] for s in slides],
        "slides": slides,
        "providerId": provider,
    }


JOB_HANDLERS: dict[str, Callable] = {
    JobType.RENDER_IMAGES: render_images,
    JobType.RENDER_CAROUSELS: render_carousels,
}


# =============================================================================
# STEP HANDLERS (video pipeline)
# =============================================================================


def _step_provider(step, job, payload, ctx: HandlerContext, format: str) -> str | None:
    return ctx.choose_provider(
        kind=job.kind,
        modality=STEP_MODALITIES[step.step_type],
        format=format,
        payload=payload,
        duration_s=step.input.get("durationSeconds"),
    )


def gen_keyframe(step, job, payload, ctx: HandlerContext) -> dict[str, Any]:
    provider = _step_provider(step, job, payload, ctx, payload.format)
    response = ctx.generate(
        "image",
        {
            "prompt": step.input["visualPrompt"],
            "ratio": step.input.get("ratio"),
            "style": step.input.get("style"),
            "quality": step.input.get("quality"),
        },
        provider=provider,
        use_case=payload.use_case,
        format=payload.format,
    )
    return {
        "sceneIndex": step.input.get("sceneIndex"),
        "keyframeUrl": response["url"],
        "providerId": provider,
    }


def animate_clip(step, job, payload, ctx: HandlerContext) -> dict[str, Any]:
    keyframe_url = step.input.get("keyframeUrl")
    if not keyframe_url:
        raise BackendError(f"No keyframe available for scene {step.input.get('sceneIndex')}")

    provider = _step_provider(step, job, payload, ctx, payload.format)
    response = ctx.generate(
        "video",
        {
            "imageUrl": keyframe_url,
            "durationSeconds": step.input.get("durationSeconds"),
            "ratio": step.input.get("ratio"),
            "quality": step.input.get("quality"),
        },
        provider=provider,
        use_case=payload.use_case,
        format=payload.format,
    )
    return {
        "sceneIndex": step.input.get("sceneIndex"),
        "clipUrl": response["url"],
        "providerId": provider,
    }


def voiceover(step, job, payload, ctx: HandlerContext) -> dict[str, Any]:
    text = step.input.get("text")
    if not text:
        raise StepSkipped("no voiceover text")

    provider = _step_provider(step, job, payload, ctx, AUDIO_FORMAT)
    response = ctx.generate(
        "voiceover",
        {
            "text": text,
            "voiceId": step.input.get("voiceId"),
            "language": step.input.get("language"),
        },
        provider=provider,
        use_case=payload.use_case,
        format=AUDIO_FORMAT,
    )
    return {
        "voiceoverUrl": response["url"],
        "durationSeconds": response.get("durationSeconds"),
        "providerId": provider,
    }


def music(step, job, payload, ctx: HandlerContext) -> dict[str, Any]:
    provider = _step_provider(step, job, payload, ctx, AUDIO_FORMAT)
    response = ctx.generate(
        "music",
        {
            "prompt": step.input["prompt"],
            "durationSeconds": step.input.get("durationSeconds"),
        },
        provider=provider,
        use_case=payload.use_case,
        format=AUDIO_FORMAT,
    )
    return {"musicUrl": response["url"], "providerId": provider}


def concat_clips(step, job, payload, ctx: HandlerContext) -> dict[str, Any]:
    clip_urls = step.input.get("clipUrls") or []
    if not clip_urls:
        raise BackendError("No clips to concatenate")
    response = ctx.generate(
        "concat",
        {"clipUrls": clip_urls},
        provider=None,
        use_case=payload.use_case,
        format=payload.format,
    )
    return {"finalVideoUrl": response["url"], "clipCount": len(clip_urls)}


def mix_audio(step, job, payload, ctx: HandlerContext) -> dict[str, Any]:
    voiceover_url = step.input.get("voiceoverUrl")
    music_url = step.input.get("musicUrl")
    if not voiceover_url and not music_url:
        raise StepSkipped("no audio tracks to mix")

    response = ctx.generate(
        "mix",
        {
            "videoUrl": step.input.get("videoUrl"),
            "voiceoverUrl": voiceover_url,
            "musicUrl": music_url,
            **{key: step.input.get(key, value) for key, value in DEFAULT_MIX.items()},
        },
        provider=None,
        use_case=payload.use_case,
        format=payload.format,
    )
    return {"mixedVideoUrl": response["url"]}


def deliver(step, job, payload, ctx: HandlerContext) -> dict[str, Any]:
    video_url = step.input.get("finalVideoUrl")
    if not video_url:
        raise BackendError("No video to deliver")
    response = ctx.generate(
        "deliver",
        {
            "videoUrl": video_url,
            "format": step.input.get("format"),
            "ratio": step.input.get("ratio"),
            "orderId": job.payload.get("order_id"),
        },
        provider=None,
        use_case=payload.use_case,
        format=payload.format,
    )
    return {"deliveredUrl": response["url"]}


STEP_HANDLERS: dict[str, Callable] = {
    StepType.GEN_KEYFRAME: gen_keyframe,
    StepType.ANIMATE_CLIP: animate_clip,
    StepType.VOICEOVER: voiceover,
    StepType.MUSIC: music,
    StepType.CONCAT_CLIPS: concat_clips,
    StepType.MIX_AUDIO: mix_audio,
    StepType.DELIVER: deliver,
}
