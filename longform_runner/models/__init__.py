from .longform_models import (
    ClipPlanEntry,
    LongFormProject,
    ProjectStatus,
    ProjectUpdate,
)
from .video_filters import (
    FILTER_TABLE,
    NO_OP_TRANSFORM,
    FilterCategory,
    FilterTransform,
    VideoFilter,
    resolve_filter,
)

__all__ = [
    "ClipPlanEntry",
    "LongFormProject",
    "ProjectStatus",
    "ProjectUpdate",
    "FILTER_TABLE",
    "NO_OP_TRANSFORM",
    "FilterCategory",
    "FilterTransform",
    "VideoFilter",
    "resolve_filter",
]
