import logging
from dataclasses import replace
from pathlib import Path

import pytest

from conftest import FakeMediaTools, FakeStorage, InMemoryProjectStore
from longform_runner.context import RunnerContext
from longform_runner.errors import ReferenceDownloadError, StorageError
from longform_runner.models.video_filters import FILTER_TABLE, VideoFilter
from longform_runner.operators.longform_operator import LongFormPipeline, band_progress


class ReferenceDownloader:
    def __init__(self, failing_urls=()):
        self.failing_urls = set(failing_urls)
        self.calls = []

    def __call__(self, url, out_path: Path, *, ffmpeg_location=None) -> Path:
        self.calls.append(url)
        if url in self.failing_urls:
            raise ReferenceDownloadError(f"blocked: {url}")
        out_path.write_bytes(b"source")
        return out_path


class MusicDownloader:
    def __init__(self, error: Exception | None = None):
        self.error = error
        self.calls = []

    def __call__(self, url, out_path: Path, *, timeout=None, ffmpeg_location=None) -> Path:
        self.calls.append(url)
        if self.error is not None:
            raise self.error
        out_path.write_bytes(b"raw music")
        return out_path


def _pipeline(runner_context, store, storage, media, refs=None, music=None):
    return LongFormPipeline(
        runner_context,
        store,
        storage,
        media,
        reference_downloader=refs or ReferenceDownloader(),
        music_downloader=music or MusicDownloader(),
    )


def test_band_progress_rounds_half_up():
    assert band_progress(10, 20, 1, 8) == 13
    assert band_progress(10, 20, 1, 3) == 17
    assert band_progress(35, 35, 3, 3) == 70
    assert band_progress(10, 20, 0, 3) == 10


class TestHappyPath:
    def test_status_sequence_and_final_path(
        self, runner_context, make_project, fake_media, fake_storage
    ):
        project = make_project()
        store = InMemoryProjectStore([project])
        pipeline = _pipeline(runner_context, store, fake_storage, fake_media)

        assert pipeline.process_project(project) is True

        assert store.statuses("proj-1") == [
            "downloading_clips",
            "assembling",
            "ready_for_review",
        ]
        final = store.projects["proj-1"]
        assert final.status == "ready_for_review"
        assert final.final_video_path == "user-1/longform/proj-1/final.mp4"
        assert final.processing_progress == 100
        assert final.error_message is None
        assert [path for path, _ in fake_storage.uploads] == ["user-1/longform/proj-1/final.mp4"]

    def test_progress_is_monotonic(self, runner_context, make_project, fake_media, fake_storage):
        project = make_project()
        store = InMemoryProjectStore([project])
        _pipeline(runner_context, store, fake_storage, fake_media).process_project(project)

        progress = store.progress_values("proj-1")
        assert progress == sorted(progress)
        assert progress[0] == 5
        assert progress[-1] == 100
        assert 35 in progress and 80 in progress and 90 in progress

    def test_clips_follow_plan_and_filter(
        self, runner_context, make_project, fake_media, fake_storage
    ):
        project = make_project(video_filter="cinematic_warm")
        store = InMemoryProjectStore([project])
        _pipeline(runner_context, store, fake_storage, fake_media).process_project(project)

        lengths = [call["clip_seconds"] for call in fake_media.extract_calls]
        sources = [call["source_path"].name for call in fake_media.extract_calls]
        assert lengths == [10, 10, 5]
        assert sources == ["source_0.mp4", "source_1.mp4", "source_0.mp4"]
        expected = FILTER_TABLE[VideoFilter.CINEMATIC_WARM].ffmpeg_filter
        assert {call["filter_string"] for call in fake_media.extract_calls} == {expected}
        assert [p.name for p in fake_media.concat_calls[0]] == [
            "clip_0000.mp4",
            "clip_0001.mp4",
            "clip_0002.mp4",
        ]

    def test_unknown_filter_means_no_filter(
        self, runner_context, make_project, fake_media, fake_storage
    ):
        project = make_project(video_filter="sparkles")
        store = InMemoryProjectStore([project])
        assert _pipeline(runner_context, store, fake_storage, fake_media).process_project(project)

        assert {call["filter_string"] for call in fake_media.extract_calls} == {""}

    def test_publish_blockers_logged_after_render(
        self, runner_context, make_project, fake_media, fake_storage, caplog
    ):
        project = make_project(channel_id=None)
        store = InMemoryProjectStore([project])

        with caplog.at_level(logging.INFO, logger="longform_runner.operators.longform_operator"):
            assert _pipeline(runner_context, store, fake_storage, fake_media).process_project(
                project
            )

        assert "proj-1: No channel selected for upload" in caplog.text
        assert "No final video file found" not in caplog.text
        assert "not ready for upload" not in caplog.text

    def test_no_blockers_logged_when_channel_set(
        self, runner_context, make_project, fake_media, fake_storage, caplog
    ):
        project = make_project(channel_id="chan-1")
        store = InMemoryProjectStore([project])

        with caplog.at_level(logging.INFO, logger="longform_runner.operators.longform_operator"):
            _pipeline(runner_context, store, fake_storage, fake_media).process_project(project)

        assert "Not yet publishable" not in caplog.text

    def test_relative_work_dir_is_absolute(
        self, runner_config, make_project, fake_media, fake_storage, monkeypatch, tmp_path
    ):
        monkeypatch.chdir(tmp_path)
        context = RunnerContext(
            config=replace(runner_config, work_dir=Path("downloads") / "longform"),
            supabase_url="https://example.supabase.co",
            service_role_key="service-key",
            user_id="user-1",
        )
        pipeline = _pipeline(context, InMemoryProjectStore(), fake_storage, fake_media)

        assert pipeline.work_dir_for("proj-1") == tmp_path / "downloads" / "longform" / "proj-1"

    def test_work_dir_removed(self, runner_context, make_project, fake_media, fake_storage):
        project = make_project()
        store = InMemoryProjectStore([project])
        pipeline = _pipeline(runner_context, store, fake_storage, fake_media)

        pipeline.process_project(project)

        assert not pipeline.work_dir_for("proj-1").exists()


class TestReferenceDownloads:
    def test_partial_failure_uses_surviving_source(
        self, runner_context, make_project, fake_media, fake_storage
    ):
        urls = ["https://a.example/1", "https://a.example/2", "https://a.example/3"]
        project = make_project(reference_urls=urls)
        store = InMemoryProjectStore([project])
        refs = ReferenceDownloader(failing_urls=urls[1:])

        assert _pipeline(runner_context, store, fake_storage, fake_media, refs=refs).process_project(
            project
        )

        assert refs.calls == urls
        assert {call["source_path"].name for call in fake_media.extract_calls} == {"source_0.mp4"}
        assert store.projects["proj-1"].status == "ready_for_review"

    def test_all_failed_marks_project_failed(
        self, runner_context, make_project, fake_media, fake_storage
    ):
        urls = ["https://a.example/1", "https://a.example/2", "https://a.example/3"]
        project = make_project(reference_urls=urls)
        store = InMemoryProjectStore([project])
        refs = ReferenceDownloader(failing_urls=urls)

        assert not _pipeline(
            runner_context, store, fake_storage, fake_media, refs=refs
        ).process_project(project)

        assert "assembling" not in store.statuses("proj-1")
        final = store.projects["proj-1"]
        assert final.status == "failed"
        assert final.error_message == "No reference videos downloaded (3 attempted)"
        assert fake_media.extract_calls == []

    def test_download_progress_per_reference(
        self, runner_context, make_project, fake_media, fake_storage
    ):
        urls = ["https://a.example/1", "https://a.example/2", "https://a.example/3"]
        project = make_project(reference_urls=urls)
        store = InMemoryProjectStore([project])
        _pipeline(runner_context, store, fake_storage, fake_media).process_project(project)

        progress = store.progress_values("proj-1")
        assert progress[1:4] == [17, 23, 30]

    def test_empty_references_fail(self, runner_context, make_project, fake_media, fake_storage):
        project = make_project(reference_urls=[])
        store = InMemoryProjectStore([project])

        assert not _pipeline(runner_context, store, fake_storage, fake_media).process_project(
            project
        )
        assert store.projects["proj-1"].error_message == "reference_urls empty"


class TestVoiceover:
    def test_missing_voiceover_path(self, runner_context, make_project, fake_media, fake_storage):
        project = make_project(voiceover_path=None)
        store = InMemoryProjectStore([project])

        assert not _pipeline(runner_context, store, fake_storage, fake_media).process_project(
            project
        )
        final = store.projects["proj-1"]
        assert final.status == "failed"
        assert final.error_message == "voiceover_path missing"

    def test_voiceover_too_short(self, runner_context, make_project, fake_storage):
        media = FakeMediaTools(voice_duration=0.8)
        project = make_project()
        store = InMemoryProjectStore([project])
        refs = ReferenceDownloader()

        assert not _pipeline(
            runner_context, store, fake_storage, media, refs=refs
        ).process_project(project)
        assert store.projects["proj-1"].error_message == "Voiceover duration invalid"
        assert refs.calls == []

    def test_voiceover_download_failure(self, runner_context, make_project, fake_media):
        project = make_project()
        store = InMemoryProjectStore([project])

        assert not _pipeline(runner_context, store, FakeStorage(), fake_media).process_project(
            project
        )
        assert "Download failed" in store.projects["proj-1"].error_message


class TestBackgroundMusic:
    def test_music_reconciled_to_video_duration(
        self, runner_context, make_project, fake_media, fake_storage
    ):
        project = make_project(background_music_url="https://assets.mixkit.co/track.mp3")
        store = InMemoryProjectStore([project])
        music = MusicDownloader()

        assert _pipeline(
            runner_context, store, fake_storage, fake_media, music=music
        ).process_project(project)

        assert music.calls == ["https://assets.mixkit.co/track.mp3"]
        assert fake_media.reconcile_calls[0][1] == pytest.approx(25.0)
        assert fake_media.mux_calls[0]["music_path"].name == "bg.m4a"

    def test_music_failure_is_not_fatal(
        self, runner_context, make_project, fake_media, fake_storage
    ):
        project = make_project(background_music_url="https://example.com/blocked.mp3")
        store = InMemoryProjectStore([project])
        music = MusicDownloader(error=RuntimeError("403 Forbidden"))

        assert _pipeline(
            runner_context, store, fake_storage, fake_media, music=music
        ).process_project(project)

        assert fake_media.mux_calls[0]["music_path"] is None
        assert store.projects["proj-1"].status == "ready_for_review"

    def test_no_music_url_skips_music(
        self, runner_context, make_project, fake_media, fake_storage
    ):
        project = make_project(background_music_url=None)
        store = InMemoryProjectStore([project])
        music = MusicDownloader()

        _pipeline(runner_context, store, fake_storage, fake_media, music=music).process_project(
            project
        )

        assert music.calls == []
        assert fake_media.reconcile_calls == []


class TestFailures:
    def test_upload_failure_marks_failed_and_cleans_up(
        self, runner_context, make_project, fake_media, fake_storage
    ):
        fake_storage.upload_error = StorageError("Upload failed (500): boom")
        project = make_project()
        store = InMemoryProjectStore([project])
        pipeline = _pipeline(runner_context, store, fake_storage, fake_media)

        assert not pipeline.process_project(project)

        final = store.projects["proj-1"]
        assert final.status == "failed"
        assert final.error_message == "Upload failed (500): boom"
        assert final.final_video_path is None
        assert not pipeline.work_dir_for("proj-1").exists()

    def test_mux_failure_marks_failed(
        self, runner_context, make_project, fake_media, fake_storage
    ):
        fake_media.fail_on["mux"] = RuntimeError("ffmpeg exited with code 1")
        project = make_project()
        store = InMemoryProjectStore([project])

        assert not _pipeline(runner_context, store, fake_storage, fake_media).process_project(
            project
        )
        assert store.projects["proj-1"].error_message == "ffmpeg exited with code 1"
        assert fake_storage.uploads == []

    def test_empty_message_falls_back_to_type_name(
        self, runner_context, make_project, fake_media, fake_storage
    ):
        fake_media.fail_on["concat"] = ValueError()
        project = make_project()
        store = InMemoryProjectStore([project])

        _pipeline(runner_context, store, fake_storage, fake_media).process_project(project)

        assert store.projects["proj-1"].error_message == "ValueError"
