"""
Pydantic models for long-form project processing.

This module defines:
- Project status values shared with the dashboard
- The project record as read from the project store
- Partial updates written back by the runner
- The ephemeral clip plan
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator


# =============================================================================
# ENUMS
# =============================================================================


class ProjectStatus(str, Enum):
    """Status of a long-form project."""

    DRAFT = "draft"  # Being edited in the dashboard
    SCRIPT_READY = "script_ready"  # Script generated, no voiceover yet
    VOICEOVER_READY = "voiceover_ready"  # Voiceover uploaded, not yet submitted
    PENDING_PROCESSING = "pending_processing"  # Waiting for a runner
    DOWNLOADING_CLIPS = "downloading_clips"  # Claimed, fetching inputs
    ASSEMBLING = "assembling"  # Rendering clips and mixing audio
    READY_FOR_REVIEW = "ready_for_review"  # Final render uploaded
    UPLOADING = "uploading"  # Publish pipeline is uploading to YouTube
    SCHEDULED = "scheduled"
    PUBLISHED = "published"
    FAILED = "failed"


PUBLISHABLE_STATUSES = frozenset(
    {ProjectStatus.READY_FOR_REVIEW, ProjectStatus.UPLOADING}
)


# =============================================================================
# PROJECT RECORD
# =============================================================================


class LongFormProject(BaseModel):
    """A row of long_form_projects, restricted to the fields the runner uses."""

    model_config = {"extra": "ignore"}

    id: str
    user_id: str | None = None
    channel_id: str | None = None
    topic: str = ""
    target_duration_seconds: float | None = None
    reference_urls: list[str] = Field(default_factory=list)
    voiceover_path: str | None = None
    video_filter: str | None = None
    background_music_url: str | None = None
    status: ProjectStatus = ProjectStatus.PENDING_PROCESSING
    processing_progress: int | None = Field(default=None, ge=0, le=100)
    error_message: str | None = None
    final_video_path: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @field_validator("reference_urls", mode="before")
    @classmethod
    def _coerce_reference_urls(cls, value: Any) -> list[str]:
        # reference_urls is a JSON column; anything but a list means "no references"
        if not isinstance(value, list):
            return []
        return [str(url).strip() for url in value if url and str(url).strip()]

    def publish_blockers(self) -> list[str]:
        """Reasons this project can not be handed to the publish pipeline yet."""
        blockers: list[str] = []
        if self.status not in PUBLISHABLE_STATUSES:
            blockers.append(
                f"Project is not ready for upload. Current status: {self.status.value}"
            )
        if not self.final_video_path:
            blockers.append("No final video file found")
        if not self.channel_id:
            blockers.append("No channel selected for upload")
        return blockers


class ProjectUpdate(BaseModel):
    """Partial update written back to the project store."""

    status: ProjectStatus | None = None
    processing_progress: int | None = Field(default=None, ge=0, le=100)
    error_message: str | None = None
    final_video_path: str | None = None

    def to_payload(self) -> dict[str, Any]:
        # Only explicitly set fields, so error_message=None clears the column
        return self.model_dump(mode="json", exclude_unset=True)


# =============================================================================
# CLIP PLAN
# =============================================================================


class ClipPlanEntry(BaseModel):
    """One planned clip: which downloaded source it draws from and how long it is."""

    index: int = Field(ge=0)
    source_index: int = Field(ge=0)
    clip_length: float = Field(gt=0)
