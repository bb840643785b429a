"""
Fixed table of visual filters applied to every clip of a project.

Each filter maps to an ffmpeg filter string that is appended to the
scale/pad chain by the clip extractor. Lookups never fail: anything that
is not a known filter id resolves to the no-op transform.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any


class FilterCategory(str, Enum):
    COLOR = "color"
    STYLE = "style"
    EFFECT = "effect"
    CINEMATIC = "cinematic"


class VideoFilter(str, Enum):
    NONE = "none"
    BLACK_AND_WHITE = "black_and_white"
    SEPIA = "sepia"
    WARM = "warm"
    COOL = "cool"
    VIBRANT = "vibrant"
    MUTED = "muted"
    RETRO = "retro"
    FILM_GRAIN = "film_grain"
    VHS = "vhs"
    VINTAGE = "vintage"
    POLAROID = "polaroid"
    VIGNETTE = "vignette"
    VIGNETTE_STRONG = "vignette_strong"
    SHARPEN = "sharpen"
    SOFT_GLOW = "soft_glow"
    HIGH_CONTRAST = "high_contrast"
    LOW_CONTRAST = "low_contrast"
    CINEMATIC_TEAL_ORANGE = "cinematic_teal_orange"
    CINEMATIC_COLD = "cinematic_cold"
    CINEMATIC_WARM = "cinematic_warm"
    BLOCKBUSTER = "blockbuster"
    NOIR = "noir"
    DOCUMENTARY = "documentary"


@dataclass(frozen=True)
class FilterTransform:
    name: str
    description: str
    category: FilterCategory
    ffmpeg_filter: str

    @property
    def is_noop(self) -> bool:
        return not self.ffmpeg_filter.strip()


NO_OP_TRANSFORM = FilterTransform(
    name="None (Original)",
    description="Keep original video colors and style",
    category=FilterCategory.COLOR,
    ffmpeg_filter="",
)


FILTER_TABLE: dict[VideoFilter, FilterTransform] = {
    VideoFilter.NONE: NO_OP_TRANSFORM,
    # Color
    VideoFilter.BLACK_AND_WHITE: FilterTransform(
        "Black & White",
        "Classic monochrome look",
        FilterCategory.COLOR,
        "colorchannelmixer=.3:.4:.3:0:.3:.4:.3:0:.3:.4:.3",
    ),
    VideoFilter.SEPIA: FilterTransform(
        "Sepia",
        "Warm brownish vintage tone",
        FilterCategory.COLOR,
        "colorchannelmixer=.393:.769:.189:0:.349:.686:.168:0:.272:.534:.131",
    ),
    VideoFilter.WARM: FilterTransform(
        "Warm Tone",
        "Adds warmth with orange/yellow tint",
        FilterCategory.COLOR,
        "colorbalance=rs=.1:gs=-.05:bs=-.1:rm=.1:gm=0:bm=-.1:rh=.1:gh=0:bh=-.05",
    ),
    VideoFilter.COOL: FilterTransform(
        "Cool Tone",
        "Adds cool blue tint",
        FilterCategory.COLOR,
        "colorbalance=rs=-.1:gs=0:bs=.1:rm=-.1:gm=0:bm=.1:rh=-.05:gh=0:bh=.1",
    ),
    VideoFilter.VIBRANT: FilterTransform(
        "Vibrant",
        "Boosted saturation and contrast",
        FilterCategory.COLOR,
        "eq=saturation=1.4:contrast=1.1:brightness=0.02",
    ),
    VideoFilter.MUTED: FilterTransform(
        "Muted / Desaturated",
        "Soft, low saturation look",
        FilterCategory.COLOR,
        "eq=saturation=0.6:contrast=0.95",
    ),
    # Style
    VideoFilter.RETRO: FilterTransform(
        "Retro / 70s",
        "Vintage 70s film look with faded blacks",
        FilterCategory.STYLE,
        "curves=vintage,eq=saturation=0.8:contrast=1.05",
    ),
    VideoFilter.FILM_GRAIN: FilterTransform(
        "Film Grain",
        "Adds subtle film grain texture",
        FilterCategory.STYLE,
        "noise=c0s=8:c0f=u+t",
    ),
    VideoFilter.VHS: FilterTransform(
        "VHS / 80s",
        "Retro VHS tape effect",
        FilterCategory.STYLE,
        "noise=c0s=12:c0f=u+t,colorbalance=rs=.1:gs=-.05:bs=-.1,eq=saturation=0.85",
    ),
    VideoFilter.VINTAGE: FilterTransform(
        "Vintage Film",
        "Classic old film aesthetic",
        FilterCategory.STYLE,
        "curves=vintage",
    ),
    VideoFilter.POLAROID: FilterTransform(
        "Polaroid",
        "Instant camera look with slight fade",
        FilterCategory.STYLE,
        "colorbalance=rs=.05:gs=.02:bs=-.08,eq=saturation=0.9:contrast=1.05:brightness=0.03",
    ),
    # Effect
    VideoFilter.VIGNETTE: FilterTransform(
        "Vignette",
        "Dark edges for focus effect",
        FilterCategory.EFFECT,
        "vignette=PI/4",
    ),
    VideoFilter.VIGNETTE_STRONG: FilterTransform(
        "Strong Vignette",
        "Heavy dark edges",
        FilterCategory.EFFECT,
        "vignette=PI/3",
    ),
    VideoFilter.SHARPEN: FilterTransform(
        "Sharpen",
        "Enhanced edge sharpness",
        FilterCategory.EFFECT,
        "unsharp=5:5:1.0:5:5:0.0",
    ),
    VideoFilter.SOFT_GLOW: FilterTransform(
        "Soft Glow",
        "Dreamy soft focus effect",
        FilterCategory.EFFECT,
        "gblur=sigma=1.5,eq=brightness=0.03",
    ),
    VideoFilter.HIGH_CONTRAST: FilterTransform(
        "High Contrast",
        "Punchy, dramatic contrast",
        FilterCategory.EFFECT,
        "eq=contrast=1.3:brightness=-0.02",
    ),
    VideoFilter.LOW_CONTRAST: FilterTransform(
        "Low Contrast",
        "Flat, matte look",
        FilterCategory.EFFECT,
        "eq=contrast=0.8:brightness=0.05",
    ),
    # Cinematic
    VideoFilter.CINEMATIC_TEAL_ORANGE: FilterTransform(
        "Cinematic Teal & Orange",
        "Hollywood color grading style",
        FilterCategory.CINEMATIC,
        "colorbalance=rs=.15:gs=-.05:bs=-.15:rm=.1:gm=-.02:bm=.1:rh=-.05:gh=.02:bh=.15,"
        "eq=contrast=1.1:saturation=1.1",
    ),
    VideoFilter.CINEMATIC_COLD: FilterTransform(
        "Cinematic Cold",
        "Cold, blueish thriller look",
        FilterCategory.CINEMATIC,
        "colorbalance=rs=-.15:gs=0:bs=.2:rm=-.1:gm=.02:bm=.15,eq=contrast=1.15:saturation=0.9",
    ),
    VideoFilter.CINEMATIC_WARM: FilterTransform(
        "Cinematic Warm",
        "Warm golden hour look",
        FilterCategory.CINEMATIC,
        "colorbalance=rs=.2:gs=.1:bs=-.15:rm=.15:gm=.05:bm=-.1,eq=contrast=1.1:saturation=1.05",
    ),
    VideoFilter.BLOCKBUSTER: FilterTransform(
        "Blockbuster",
        "High saturation action movie style",
        FilterCategory.CINEMATIC,
        "eq=saturation=1.3:contrast=1.2:brightness=0.02,unsharp=3:3:0.5:3:3:0.0",
    ),
    VideoFilter.NOIR: FilterTransform(
        "Film Noir",
        "Dark, high contrast black & white",
        FilterCategory.CINEMATIC,
        "colorchannelmixer=.3:.4:.3:0:.3:.4:.3:0:.3:.4:.3,"
        "eq=contrast=1.4:brightness=-0.05,vignette=PI/3",
    ),
    VideoFilter.DOCUMENTARY: FilterTransform(
        "Documentary",
        "Natural, slightly desaturated look",
        FilterCategory.CINEMATIC,
        "eq=saturation=0.85:contrast=1.05,unsharp=3:3:0.3:3:3:0.0",
    ),
}


def parse_filter_id(value: Any) -> VideoFilter | None:
    """Map a stored filter id onto the enum, or None if it is not a known filter."""
    if isinstance(value, VideoFilter):
        return value
    if not isinstance(value, str):
        return None
    try:
        return VideoFilter(value.strip().lower())
    except ValueError:
        return None


def resolve_filter(value: Any) -> FilterTransform:
    filter_id = parse_filter_id(value)
    if filter_id is None:
        return NO_OP_TRANSFORM
    return FILTER_TABLE.get(filter_id, NO_OP_TRANSFORM)
