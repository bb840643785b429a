from __future__ import annotations

import logging
import math
import shutil
from pathlib import Path
from typing import Any, Callable

from longform_runner.context import RunnerContext
from longform_runner.errors import (
    InvalidInputError,
    NoSourcesDownloadedError,
    ProjectStoreError,
    VoiceoverMissingError,
)
from longform_runner.models.longform_models import (
    LongFormProject,
    ProjectStatus,
    ProjectUpdate,
)
from longform_runner.models.video_filters import FilterTransform, resolve_filter
from longform_runner.operators.project_store import ProjectRepository
from longform_runner.utils.clip_planner import plan_clips
from longform_runner.utils.downloaders import download_music, download_reference_video
from longform_runner.utils.ffmpeg_utils import MediaTools
from longform_runner.utils.storage import StorageGateway

logger = logging.getLogger(__name__)


PROGRESS_STARTED = 5
PROGRESS_DOWNLOAD_START = 10
PROGRESS_DOWNLOAD_SPAN = 20
PROGRESS_ASSEMBLING = 35
PROGRESS_CLIPS_SPAN = 35
PROGRESS_MIXING = 80
PROGRESS_UPLOADING = 90
PROGRESS_DONE = 100


def band_progress(start: int, span: int, done: int, total: int) -> int:
    # half-up rounding, so 2.5 -> 3 rather than banker's rounding
    return start + int(math.floor(done / total * span + 0.5))


class LongFormPipeline:
    """
    Drives one long-form project from pending_processing to ready_for_review.

    Every stage persists status/progress through the project repository.
    Any error escaping a stage marks the project failed with the error
    message and removes the local work directory.
    """

    def __init__(
        self,
        context: RunnerContext,
        store: ProjectRepository,
        storage: StorageGateway,
        media: MediaTools,
        *,
        reference_downloader: Callable[..., Path] = download_reference_video,
        music_downloader: Callable[..., Path] = download_music,
    ):
        self.context = context
        self.store = store
        self.storage = storage
        self.media = media
        self._reference_downloader = reference_downloader
        self._music_downloader = music_downloader

    def work_dir_for(self, project_id: str) -> Path:
        return (self.context.config.work_dir / project_id).absolute()

    def process_project(self, project: LongFormProject) -> bool:
        logger.info("Long-form: %s - %s", project.id, project.topic)

        work_dir = self.work_dir_for(project.id)
        sources_dir = work_dir / "sources"
        clips_dir = work_dir / "clips"

        try:
            sources_dir.mkdir(parents=True, exist_ok=True)
            clips_dir.mkdir(parents=True, exist_ok=True)

            self._update(
                project.id,
                status=ProjectStatus.DOWNLOADING_CLIPS,
                processing_progress=PROGRESS_STARTED,
                error_message=None,
            )

            voice_path = self._download_voiceover(project, work_dir)
            voice_duration = self.media.probe_duration(voice_path)
            if voice_duration <= 1:
                raise InvalidInputError("Voiceover duration invalid")
            logger.info("Voiceover duration: %.1fs", voice_duration)

            transform = resolve_filter(project.video_filter)
            if not transform.is_noop:
                logger.info(
                    "Applying video filter: %s (%s)", transform.name, transform.category.value
                )

            sources = self._download_references(project, sources_dir)

            self._update(
                project.id,
                status=ProjectStatus.ASSEMBLING,
                processing_progress=PROGRESS_ASSEMBLING,
            )

            clip_paths = self._extract_clips(project, voice_duration, sources, clips_dir, transform)

            logger.info("Concatenating clips...")
            combined_path = self.media.concat_clips(clip_paths, work_dir / "combined.mp4")
            video_duration = self.media.probe_duration(combined_path)
            logger.info("Combined video duration: %.1fs", video_duration)

            music_target = video_duration if video_duration > 0 else voice_duration
            music_path = self._prepare_music(project, work_dir, music_target)

            self._update(project.id, processing_progress=PROGRESS_MIXING)

            logger.info("Mixing audio + mux...")
            final_local = self.media.mux_with_audio(
                combined_path, voice_path, work_dir / "final.mp4", music_path
            )

            self._update(project.id, processing_progress=PROGRESS_UPLOADING)

            final_path = self.storage.upload(
                self.context.final_video_path(project.id), final_local
            )

            self._update(
                project.id,
                status=ProjectStatus.READY_FOR_REVIEW,
                final_video_path=final_path,
                processing_progress=PROGRESS_DONE,
                error_message=None,
            )
            logger.info("Done: %s", project.id)
            self._log_publish_blockers(project, final_path)
            return True

        except Exception as exc:
            message = str(exc) or type(exc).__name__
            logger.error("Project failed: %s: %s", project.id, message, exc_info=True)
            try:
                self._update(project.id, status=ProjectStatus.FAILED, error_message=message)
            except ProjectStoreError:
                logger.exception("Could not record failure for project %s", project.id)
            return False

        finally:
            self._cleanup(work_dir)

    def _log_publish_blockers(self, project: LongFormProject, final_path: str) -> None:
        rendered = project.model_copy(
            update={"status": ProjectStatus.READY_FOR_REVIEW, "final_video_path": final_path}
        )
        for blocker in rendered.publish_blockers():
            logger.info("Not yet publishable: %s: %s", project.id, blocker)

    def _update(self, project_id: str, **fields: Any) -> None:
        self.store.update_project(project_id, ProjectUpdate(**fields))

    def _download_voiceover(self, project: LongFormProject, work_dir: Path) -> Path:
        if not project.voiceover_path:
            raise VoiceoverMissingError()
        return self.storage.download(project.voiceover_path, work_dir / "voiceover.mp3")

    def _download_references(
        self, project: LongFormProject, sources_dir: Path
    ) -> list[Path]:
        refs = project.reference_urls
        if not refs:
            raise InvalidInputError("reference_urls empty")

        ffmpeg_location = self._ffmpeg_location()
        downloaded: list[Path] = []
        for index, url in enumerate(refs):
            out_path = sources_dir / f"source_{index}.mp4"
            logger.info("Ref %d/%d: %s", index + 1, len(refs), url)
            try:
                downloaded.append(
                    self._reference_downloader(url, out_path, ffmpeg_location=ffmpeg_location)
                )
            except Exception as exc:
                logger.warning("Download failed for ref %d (%s): %s", index + 1, url, exc)

            self._update(
                project.id,
                processing_progress=band_progress(
                    PROGRESS_DOWNLOAD_START, PROGRESS_DOWNLOAD_SPAN, index + 1, len(refs)
                ),
            )

        if not downloaded:
            raise NoSourcesDownloadedError(len(refs))
        if len(downloaded) < len(refs):
            logger.warning(
                "Only %d of %d reference videos downloaded for %s",
                len(downloaded),
                len(refs),
                project.id,
            )
        return downloaded

    def _extract_clips(
        self,
        project: LongFormProject,
        voice_duration: float,
        sources: list[Path],
        clips_dir: Path,
        transform: FilterTransform,
    ) -> list[Path]:
        max_clip_seconds = self.context.config.max_clip_seconds
        plan = plan_clips(voice_duration, max_clip_seconds, len(sources))
        logger.info(
            "Need clips: ceil(%.1f/%s) = %d", voice_duration, max_clip_seconds, len(plan)
        )

        clip_paths: list[Path] = []
        for entry in plan:
            clip_path = clips_dir / f"clip_{entry.index:04d}.mp4"
            logger.info(
                "Clip %d/%d from source %d: %.1fs",
                entry.index + 1,
                len(plan),
                entry.source_index + 1,
                entry.clip_length,
            )
            clip_paths.append(
                self.media.extract_clip(
                    sources[entry.source_index],
                    clip_path,
                    entry.clip_length,
                    transform.ffmpeg_filter,
                )
            )
            self._update(
                project.id,
                processing_progress=band_progress(
                    PROGRESS_ASSEMBLING, PROGRESS_CLIPS_SPAN, entry.index + 1, len(plan)
                ),
            )
        return clip_paths

    def _prepare_music(
        self, project: LongFormProject, work_dir: Path, target_duration: float
    ) -> Path | None:
        if not project.background_music_url:
            return None

        raw_path = work_dir / "bg_raw.mp3"
        try:
            logger.info("Downloading background music...")
            downloaded = self._music_downloader(
                project.background_music_url,
                raw_path,
                timeout=self.context.config.http_timeout_seconds,
                ffmpeg_location=self._ffmpeg_location(),
            )
            music_path = self.media.reconcile_music(
                downloaded, target_duration, work_dir / "bg.m4a"
            )
        except Exception as exc:
            logger.warning("BG music failed, continuing without music: %s", exc)
            return None
        finally:
            raw_path.unlink(missing_ok=True)
        return music_path

    def _ffmpeg_location(self) -> str | None:
        ffmpeg_bin = self.context.config.ffmpeg_bin
        return None if ffmpeg_bin == "ffmpeg" else ffmpeg_bin

    def _cleanup(self, work_dir: Path) -> None:
        shutil.rmtree(work_dir, ignore_errors=True)
