"""
Payload schema and pipeline planning tests.

Tests for:
A) Tagged payload variants - validation, defaults, ignored fields
B) Error reporting - PayloadValidationError with per-field errors
C) Video planning - step order and inputs
"""

from __future__ import annotations

import pytest

from alfie.core.enums import QualityTier, StepType
from alfie.jobs.exceptions import PayloadValidationError
from alfie.jobs.payloads import CarouselPayload, ImagePayload, VideoPayload, parse_payload
from alfie.jobs.steps import DEFAULT_MIX, MUSIC_TAIL_SECONDS, plan_video_steps


# =============================================================================
# A) VARIANTS
# =============================================================================


class TestPayloadVariants:
    """Each kind maps to one validated model."""

    def test_image_defaults(self):
        payload = parse_payload("image", {"prompt": "a red fox"})
        assert isinstance(payload, ImagePayload)
        assert payload.count == 1
        assert payload.format == "1024x1024"
        assert payload.quality == QualityTier.STANDARD

    def test_carousel_counts_slides(self):
        payload = parse_payload("carousel", {
            "prompt": "launch",
            "slides": [{"title": "One"}, {"title": "Two"}, {"title": "Three"}],
        })
        assert isinstance(payload, CarouselPayload)
        assert payload.image_count == 3

    def test_video_total_duration(self):
        payload = parse_payload("video", {
            "scenes": [
                {"visual_prompt": "beach", "duration_seconds": 5},
                {"visual_prompt": "city"},
            ],
        })
        assert isinstance(payload, VideoPayload)
        assert payload.total_duration_seconds == 13
        assert payload.ratio == "9:16"

    def test_unknown_fields_ignored(self):
        """Extra fields never reach the stored payload."""
        payload = parse_payload("image", {"prompt": "x", "tracking": "abc"})
        assert "tracking" not in payload.model_dump()

    def test_kind_in_body_cannot_override(self):
        """The kind argument wins over a kind field in the payload."""
        payload = parse_payload("image", {"prompt": "x", "kind": "video"})
        assert isinstance(payload, ImagePayload)

    def test_whitespace_stripped(self):
        assert parse_payload("image", {"prompt": "  fox  "}).prompt == "fox"


# =============================================================================
# B) ERRORS
# =============================================================================


class TestPayloadErrors:
    """Invalid payloads are rejected with actionable errors."""

    def test_missing_prompt(self):
        with pytest.raises(PayloadValidationError) as exc:
            parse_payload("image", {})
        assert exc.value.code == "invalid_payload"
        assert any(err["loc"] == "prompt" for err in exc.value.errors)

    def test_count_out_of_range(self):
        with pytest.raises(PayloadValidationError) as exc:
            parse_payload("image", {"prompt": "x", "count": 50})
        assert any(err["loc"] == "count" for err in exc.value.errors)

    def test_video_needs_scenes(self):
        with pytest.raises(PayloadValidationError):
            parse_payload("video", {"scenes": []})

    def test_invalid_ratio(self):
        with pytest.raises(PayloadValidationError):
            parse_payload("video", {"scenes": [{"visual_prompt": "x"}], "ratio": "2:1"})

    def test_non_object_payload(self):
        with pytest.raises(PayloadValidationError, match="JSON object"):
            parse_payload("image", ["prompt"])

    def test_unknown_kind(self):
        with pytest.raises(PayloadValidationError):
            parse_payload("podcast", {"prompt": "x"})


# =============================================================================
# C) VIDEO PLANNING
# =============================================================================


class TestPlanVideoSteps:
    """A video request expands into an ordered pipeline."""

    def test_single_scene_minimal_pipeline(self):
        """No text, no music, one scene: keyframe, clip, mix, deliver."""
        payload = parse_payload("video", {"scenes": [{"visual_prompt": "beach"}]})
        planned = plan_video_steps(payload)
        assert [p.step_type for p in planned] == [
            StepType.GEN_KEYFRAME,
            StepType.ANIMATE_CLIP,
            StepType.MIX_AUDIO,
            StepType.DELIVER,
        ]
        assert planned[2].input == DEFAULT_MIX

    def test_full_pipeline(self):
        """Two scenes with text and music use every step type."""
        payload = parse_payload("video", {
            "scenes": [
                {"visual_prompt": "beach", "text": "Hello", "duration_seconds": 6},
                {"visual_prompt": "city", "text": "World", "duration_seconds": 4},
            ],
            "music_prompt": "lofi",
            "voice_id": "v-1",
        })
        planned = plan_video_steps(payload)
        assert [p.step_type for p in planned] == [
            StepType.GEN_KEYFRAME,
            StepType.ANIMATE_CLIP,
            StepType.GEN_KEYFRAME,
            StepType.ANIMATE_CLIP,
            StepType.VOICEOVER,
            StepType.MUSIC,
            StepType.CONCAT_CLIPS,
            StepType.MIX_AUDIO,
            StepType.DELIVER,
        ]

        voiceover = planned[4].input
        assert voiceover["text"] == "Hello World"
        assert voiceover["voiceId"] == "v-1"
        assert voiceover["language"] == "fr"

        music = planned[5].input
        assert music["durationSeconds"] == 10 + MUSIC_TAIL_SECONDS

        assert planned[6].input == {"clipCount": 2}
        assert planned[1].input["sceneIndex"] == 0
        assert planned[3].input["sceneIndex"] == 1

    def test_global_voiceover_wins(self):
        payload = parse_payload("video", {
            "scenes": [{"visual_prompt": "beach", "text": "ignored"}],
            "global_voiceover": "Narration",
        })
        voiceover = [p for p in plan_video_steps(payload) if p.step_type == StepType.VOICEOVER]
        assert voiceover[0].input["text"] == "Narration"
