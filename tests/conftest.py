from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Sequence

import pytest

from longform_runner.config import RunnerConfig
from longform_runner.context import RunnerContext
from longform_runner.errors import StorageError
from longform_runner.models.longform_models import LongFormProject, ProjectUpdate
from longform_runner.operators.project_store import is_due


class FakeMediaTools:
    """In-memory stand-in for FFmpegMediaTools that records every call."""

    def __init__(
        self,
        voice_duration: float = 25.0,
        combined_duration: float | None = None,
        music_duration: float = 4.0,
    ):
        self.voice_duration = voice_duration
        self.combined_duration = combined_duration
        self.music_duration = music_duration
        self.extract_calls: list[dict[str, Any]] = []
        self.concat_calls: list[list[Path]] = []
        self.reconcile_calls: list[tuple[Path, float]] = []
        self.mux_calls: list[dict[str, Any]] = []
        self.fail_on: dict[str, Exception] = {}

    def _maybe_fail(self, name: str) -> None:
        if name in self.fail_on:
            raise self.fail_on[name]

    def probe_duration(self, path: Path) -> float:
        name = Path(path).name
        if name.startswith("voiceover"):
            return self.voice_duration
        if name.startswith("combined"):
            if self.combined_duration is not None:
                return self.combined_duration
            return sum(call["clip_seconds"] for call in self.extract_calls)
        if name.startswith("bg"):
            return self.music_duration
        return 60.0

    def extract_clip(
        self, source_path: Path, clip_path: Path, clip_seconds: float, filter_string: str
    ) -> Path:
        self._maybe_fail("extract")
        self.extract_calls.append(
            {
                "source_path": source_path,
                "clip_path": clip_path,
                "clip_seconds": clip_seconds,
                "filter_string": filter_string,
            }
        )
        clip_path.write_bytes(b"clip")
        return clip_path

    def concat_clips(self, clip_paths: Sequence[Path], out_path: Path) -> Path:
        self._maybe_fail("concat")
        self.concat_calls.append(list(clip_paths))
        out_path.write_bytes(b"combined")
        return out_path

    def reconcile_music(self, music_path: Path, target_duration: float, out_path: Path) -> Path:
        self._maybe_fail("reconcile")
        self.reconcile_calls.append((music_path, target_duration))
        out_path.write_bytes(b"music")
        return out_path

    def mux_with_audio(
        self,
        video_path: Path,
        voice_path: Path,
        out_path: Path,
        music_path: Path | None = None,
    ) -> Path:
        self._maybe_fail("mux")
        self.mux_calls.append(
            {"video_path": video_path, "voice_path": voice_path, "music_path": music_path}
        )
        out_path.write_bytes(b"final")
        return out_path


class FakeStorage:
    def __init__(self):
        self.blobs: dict[str, bytes] = {}
        self.uploads: list[tuple[str, Path]] = []
        self.upload_error: Exception | None = None

    def download(self, remote_path: str, local_path: Path) -> Path:
        if remote_path not in self.blobs:
            raise StorageError(f"Download failed: {remote_path} not found")
        local_path.parent.mkdir(parents=True, exist_ok=True)
        local_path.write_bytes(self.blobs[remote_path])
        return local_path

    def upload(self, remote_path: str, local_path: Path) -> str:
        if self.upload_error is not None:
            raise self.upload_error
        assert local_path.exists()
        self.uploads.append((remote_path, local_path))
        self.blobs[remote_path] = local_path.read_bytes()
        return remote_path


class InMemoryProjectStore:
    def __init__(self, projects: Sequence[LongFormProject] = ()):
        self.projects = {project.id: project for project in projects}
        self.updates: list[tuple[str, dict[str, Any]]] = []
        self.claimed: list[str] = []
        self.now = datetime.now(timezone.utc)
        self.stale_minutes = 5.0

    def fetch_due_projects(self, now: datetime | None = None) -> list[LongFormProject]:
        now = now or self.now
        due = [
            project
            for project in self.projects.values()
            if is_due(project, now, timedelta(minutes=self.stale_minutes))
        ]
        return sorted(due, key=lambda p: p.created_at or now)

    def update_project(self, project_id: str, update: ProjectUpdate) -> None:
        payload = update.to_payload()
        self.updates.append((project_id, payload))
        project = self.projects.get(project_id)
        if project is not None:
            self.projects[project_id] = project.model_copy(update=update.model_dump(exclude_unset=True))

    def claim(self, project_id: str) -> None:
        self.claimed.append(project_id)
        self.updates.append((project_id, {"status": "downloading_clips", "processing_progress": 1}))

    def statuses(self, project_id: str) -> list[str]:
        return [
            payload["status"]
            for pid, payload in self.updates
            if pid == project_id and "status" in payload
        ]

    def progress_values(self, project_id: str) -> list[int]:
        return [
            payload["processing_progress"]
            for pid, payload in self.updates
            if pid == project_id and "processing_progress" in payload
        ]


@pytest.fixture
def runner_config(tmp_path: Path) -> RunnerConfig:
    return RunnerConfig(api_key="test-key", work_dir=tmp_path / "work")


@pytest.fixture
def runner_context(runner_config: RunnerConfig) -> RunnerContext:
    return RunnerContext(
        config=runner_config,
        supabase_url="https://example.supabase.co",
        service_role_key="service-key",
        user_id="user-1",
    )


@pytest.fixture
def make_project():
    def _make(**overrides: Any) -> LongFormProject:
        data: dict[str, Any] = {
            "id": "proj-1",
            "user_id": "user-1",
            "topic": "Deep sea creatures",
            "target_duration_seconds": 600,
            "reference_urls": [
                "https://www.youtube.com/watch?v=aaaaaaaaaaa",
                "https://www.youtube.com/watch?v=bbbbbbbbbbb",
            ],
            "voiceover_path": "user-1/longform/proj-1/voiceover.mp3",
            "video_filter": "cinematic_warm",
            "background_music_url": None,
            "status": "pending_processing",
        }
        data.update(overrides)
        return LongFormProject.model_validate(data)

    return _make


@pytest.fixture
def fake_media() -> FakeMediaTools:
    return FakeMediaTools()


@pytest.fixture
def fake_storage() -> FakeStorage:
    storage = FakeStorage()
    storage.blobs["user-1/longform/proj-1/voiceover.mp3"] = b"voice"
    return storage
