from __future__ import annotations

import math
import random

from longform_runner.errors import InvalidInputError
from longform_runner.models.longform_models import ClipPlanEntry


MIN_CLIP_SECONDS = 1.0
MIN_SOURCE_SECONDS = 2.0
SOURCE_TAIL_MARGIN_SECONDS = 0.5


def plan_clips(
    voice_duration: float,
    max_clip_seconds: float = 10.0,
    source_count: int = 1,
) -> list[ClipPlanEntry]:
    """
    Split the voiceover duration into clips drawn round-robin from the sources.

    Args:
        voice_duration: Voiceover length in seconds, must be > 1
        max_clip_seconds: Upper bound for a single clip
        source_count: Number of successfully downloaded reference sources

    Returns:
        Ordered clip plan; the last clip carries the remainder (at least 1s)
    """
    if voice_duration is None or not math.isfinite(voice_duration) or voice_duration <= 1:
        raise InvalidInputError("Voiceover duration invalid")
    if max_clip_seconds <= 0:
        raise InvalidInputError(f"max_clip_seconds must be positive, got {max_clip_seconds}")
    if source_count < 1:
        raise InvalidInputError("At least one reference source is required")

    clip_count = math.ceil(voice_duration / max_clip_seconds)
    plan: list[ClipPlanEntry] = []
    for index in range(clip_count):
        remaining = voice_duration - index * max_clip_seconds
        plan.append(
            ClipPlanEntry(
                index=index,
                source_index=index % source_count,
                clip_length=min(max_clip_seconds, max(MIN_CLIP_SECONDS, remaining)),
            )
        )
    return plan


def max_clip_start(source_duration: float, clip_length: float) -> float:
    return max(0.0, source_duration - clip_length - SOURCE_TAIL_MARGIN_SECONDS)


def pick_clip_start(
    source_duration: float,
    clip_length: float,
    rng: random.Random | None = None,
) -> float:
    upper = max_clip_start(source_duration, clip_length)
    if upper <= 0:
        return 0.0
    return (rng or random).uniform(0.0, upper)
