"""
Provider cost model, in credits ("woofs").

- image: ceil(base_per_image * hi-res multiplier * 1.25 if premium)
- video: ceil(base_per_chunk * ceil(duration / chunk_seconds) * quality multiplier)
- audio: ceil(base_per_request)
"""

from __future__ import annotations

import math
import re
from typing import Any

from alfie.core.enums import Modality, QualityTier

HI_RES_FORMAT = re.compile(r"3840x|4k|2048x", re.IGNORECASE)

DEFAULT_IMAGE_BASE = 1
DEFAULT_HI_RES_MULTIPLIER = 1.5
PREMIUM_IMAGE_MULTIPLIER = 1.25

DEFAULT_VIDEO_BASE_PER_CHUNK = 5
DEFAULT_CHUNK_SECONDS = 10
DEFAULT_VIDEO_QUALITY_MULTIPLIERS = {
    QualityTier.DRAFT: 0.6,
    QualityTier.STANDARD: 1.0,
    QualityTier.PREMIUM: 1.5,
}

DEFAULT_AUDIO_BASE = 1


def is_hi_res(format: str) -> bool:
    return bool(HI_RES_FORMAT.search(format or ""))


def estimate_cost(
    cost_json: dict[str, Any] | None,
    modality: str,
    format: str,
    duration_s: int,
    quality: str,
) -> int:
    """Estimated credits for one generation with this cost model."""
    cost_json = cost_json or {}

    if modality == Modality.IMAGE:
        base = cost_json.get("base_per_image") or DEFAULT_IMAGE_BASE
        hi_res = (
            cost_json.get("hi_res_multiplier") or DEFAULT_HI_RES_MULTIPLIER
            if is_hi_res(format)
            else 1
        )
        premium = PREMIUM_IMAGE_MULTIPLIER if quality == QualityTier.PREMIUM else 1
        return math.ceil(base * hi_res * premium)

    if modality == Modality.VIDEO:
        base = cost_json.get("base_per_chunk") or DEFAULT_VIDEO_BASE_PER_CHUNK
        chunk_seconds = cost_json.get("chunk_seconds") or DEFAULT_CHUNK_SECONDS
        multipliers = {
            **{str(k): v for k, v in DEFAULT_VIDEO_QUALITY_MULTIPLIERS.items()},
            **(cost_json.get("quality_multipliers") or {}),
        }
        chunks = max(1, math.ceil(max(duration_s, 1) / chunk_seconds))
        return math.ceil(base * chunks * multipliers.get(str(quality), 1.0))

    if modality == Modality.AUDIO:
        return math.ceil(cost_json.get("base_per_request") or DEFAULT_AUDIO_BASE)

    return 0
