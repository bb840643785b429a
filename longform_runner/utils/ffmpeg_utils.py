"""FFmpeg-backed media operations used by the long-form pipeline."""
from __future__ import annotations

import logging
import math
import random
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Protocol, Sequence

from longform_runner.errors import (
    ConcatFailedError,
    MediaToolError,
    MuxFailedError,
    RenderFailedError,
    SourceTooShortError,
)
from longform_runner.utils.clip_planner import MIN_SOURCE_SECONDS, pick_clip_start

logger = logging.getLogger(__name__)


OUTPUT_WIDTH = 1920
OUTPUT_HEIGHT = 1080
OUTPUT_FPS = 30
AUDIO_BITRATE = "192k"
MUSIC_VOLUME = 0.18

SCALE_PAD_FILTER = (
    f"scale={OUTPUT_WIDTH}:{OUTPUT_HEIGHT}:force_original_aspect_ratio=decrease,"
    f"pad={OUTPUT_WIDTH}:{OUTPUT_HEIGHT}:(ow-iw)/2:(oh-ih)/2"
)

# [1:a] is the voiceover, [2:a] the duration-matched music bed
DUCKING_FILTER = (
    "[1:a]volume=1.0,asplit=2[vo_sc][vo_mix];"
    f"[2:a]volume={MUSIC_VOLUME}[bg];"
    "[bg][vo_sc]sidechaincompress=threshold=0.02:ratio=12:attack=5:release=250[duck];"
    "[duck][vo_mix]amix=inputs=2:duration=first:dropout_transition=2[mix]"
)


class MediaTools(Protocol):
    def probe_duration(self, path: Path) -> float: ...

    def extract_clip(
        self, source_path: Path, clip_path: Path, clip_seconds: float, filter_string: str
    ) -> Path: ...

    def concat_clips(self, clip_paths: Sequence[Path], out_path: Path) -> Path: ...

    def reconcile_music(
        self, music_path: Path, target_duration: float, out_path: Path
    ) -> Path: ...

    def mux_with_audio(
        self,
        video_path: Path,
        voice_path: Path,
        out_path: Path,
        music_path: Path | None = None,
    ) -> Path: ...


@dataclass(frozen=True)
class MusicAdjustment:
    action: str  # "copy", "trim" or "loop"
    loops: int = 1


def plan_music_adjustment(music_duration: float, target_duration: float) -> MusicAdjustment:
    if music_duration <= 0:
        return MusicAdjustment(action="copy")
    if music_duration >= target_duration:
        return MusicAdjustment(action="trim")
    return MusicAdjustment(action="loop", loops=math.ceil(target_duration / music_duration))


def build_video_filter_chain(filter_string: str | None) -> str:
    if filter_string and filter_string.strip():
        return f"{SCALE_PAD_FILTER},{filter_string.strip()}"
    return SCALE_PAD_FILTER


def build_probe_command(ffprobe_bin: str, path: Path) -> list[str]:
    return [
        ffprobe_bin,
        "-v",
        "error",
        "-show_entries",
        "format=duration",
        "-of",
        "default=noprint_wrappers=1:nokey=1",
        str(path),
    ]


def build_extract_command(
    ffmpeg_bin: str,
    source_path: Path,
    clip_path: Path,
    start: float,
    duration: float,
    filter_string: str | None,
) -> list[str]:
    return [
        ffmpeg_bin,
        "-y",
        "-ss",
        f"{start:.3f}",
        "-i",
        str(source_path),
        "-t",
        f"{duration:.3f}",
        "-vf",
        build_video_filter_chain(filter_string),
        "-r",
        str(OUTPUT_FPS),
        "-c:v",
        "libx264",
        "-preset",
        "veryfast",
        "-crf",
        "23",
        "-pix_fmt",
        "yuv420p",
        "-an",
        str(clip_path),
    ]


def build_concat_list(clip_paths: Sequence[Path]) -> str:
    # concat demuxer resolves relative entries against the list file, not the cwd
    lines = []
    for clip_path in clip_paths:
        escaped = str(Path(clip_path).absolute()).replace("'", "'\\''")
        lines.append(f"file '{escaped}'")
    return "\n".join(lines)


def build_concat_command(ffmpeg_bin: str, list_path: Path, out_path: Path) -> list[str]:
    return [
        ffmpeg_bin,
        "-y",
        "-f",
        "concat",
        "-safe",
        "0",
        "-i",
        str(list_path),
        "-c",
        "copy",
        "-an",
        str(out_path),
    ]


def build_music_command(
    ffmpeg_bin: str,
    music_path: Path,
    out_path: Path,
    target_duration: float,
    adjustment: MusicAdjustment,
) -> list[str]:
    cmd = [ffmpeg_bin, "-y"]
    if adjustment.action == "loop" and adjustment.loops > 1:
        cmd += ["-stream_loop", str(adjustment.loops - 1)]
    cmd += [
        "-i",
        str(music_path),
        "-t",
        f"{target_duration:.3f}",
        "-vn",
        "-c:a",
        "aac",
        "-b:a",
        AUDIO_BITRATE,
        str(out_path),
    ]
    return cmd


def build_mux_command(
    ffmpeg_bin: str,
    video_path: Path,
    voice_path: Path,
    out_path: Path,
    music_path: Path | None = None,
) -> list[str]:
    cmd = [ffmpeg_bin, "-y", "-i", str(video_path), "-i", str(voice_path)]
    if music_path is not None:
        cmd += [
            "-i",
            str(music_path),
            "-filter_complex",
            DUCKING_FILTER,
            "-map",
            "0:v",
            "-map",
            "[mix]",
        ]
    else:
        cmd += ["-map", "0:v", "-map", "1:a"]
    cmd += [
        "-c:v",
        "copy",
        "-c:a",
        "aac",
        "-b:a",
        AUDIO_BITRATE,
        "-shortest",
        str(out_path),
    ]
    return cmd


class FFmpegMediaTools:
    def __init__(
        self,
        ffmpeg_bin: str = "ffmpeg",
        ffprobe_bin: str = "ffprobe",
        max_clip_seconds: float = 10.0,
        rng: random.Random | None = None,
        run: Callable[..., subprocess.CompletedProcess] = subprocess.run,
    ):
        self._ffmpeg_bin = ffmpeg_bin
        self._ffprobe_bin = ffprobe_bin
        self._max_clip_seconds = max_clip_seconds
        self._rng = rng or random.Random()
        self._run = run

    def check_available(self) -> bool:
        for binary in (self._ffmpeg_bin, self._ffprobe_bin):
            try:
                self._run([binary, "-version"], capture_output=True, text=True, check=True)
            except (FileNotFoundError, subprocess.CalledProcessError, OSError) as exc:
                logger.error("Media tool unavailable: %s (%s)", binary, exc)
                return False
        return True

    def probe_duration(self, path: Path) -> float:
        cmd = build_probe_command(self._ffprobe_bin, path)
        try:
            result = self._run(cmd, capture_output=True, text=True, check=True)
            value = float((result.stdout or "").strip())
        except (FileNotFoundError, subprocess.CalledProcessError, ValueError, OSError) as exc:
            logger.debug("Failed to probe duration of %s: %s", path, exc)
            return 0.0
        if not math.isfinite(value) or value < 0:
            return 0.0
        return value

    def extract_clip(
        self,
        source_path: Path,
        clip_path: Path,
        clip_seconds: float,
        filter_string: str,
    ) -> Path:
        source_duration = self.probe_duration(source_path)
        if source_duration <= MIN_SOURCE_SECONDS:
            raise SourceTooShortError(str(source_path), source_duration)

        duration = min(clip_seconds, self._max_clip_seconds)
        start = pick_clip_start(source_duration, duration, self._rng)

        clip_path.parent.mkdir(parents=True, exist_ok=True)
        cmd = build_extract_command(
            self._ffmpeg_bin, source_path, clip_path, start, duration, filter_string
        )
        self._execute(cmd, RenderFailedError)
        if not clip_path.exists():
            raise RenderFailedError(f"Clip extraction failed: {clip_path}")
        return clip_path

    def concat_clips(self, clip_paths: Sequence[Path], out_path: Path) -> Path:
        if not clip_paths:
            raise ConcatFailedError("No clips to concatenate")

        list_path = out_path.with_name(out_path.name + ".txt")
        list_path.write_text(build_concat_list(clip_paths), encoding="utf-8")

        self._execute(build_concat_command(self._ffmpeg_bin, list_path, out_path), ConcatFailedError)
        if not out_path.exists():
            raise ConcatFailedError(f"Concatenation failed: {out_path}")
        return out_path

    def reconcile_music(self, music_path: Path, target_duration: float, out_path: Path) -> Path:
        music_duration = self.probe_duration(music_path)
        adjustment = plan_music_adjustment(music_duration, target_duration)

        if adjustment.action == "copy":
            logger.warning("Could not determine music duration, using as-is")
            shutil.copyfile(music_path, out_path)
            return out_path

        logger.info(
            "Music duration: %.1fs, Target: %.1fs", music_duration, target_duration
        )
        if adjustment.action == "loop":
            logger.info("Looping music %dx to fit video length", adjustment.loops)
        else:
            logger.info("Trimming music to fit video length")

        cmd = build_music_command(
            self._ffmpeg_bin, music_path, out_path, target_duration, adjustment
        )
        self._execute(cmd, MediaToolError)
        return out_path

    def mux_with_audio(
        self,
        video_path: Path,
        voice_path: Path,
        out_path: Path,
        music_path: Path | None = None,
    ) -> Path:
        if music_path is not None and not music_path.exists():
            music_path = None

        cmd = build_mux_command(self._ffmpeg_bin, video_path, voice_path, out_path, music_path)
        self._execute(cmd, MuxFailedError)
        if not out_path.exists():
            raise MuxFailedError("Final mux failed")
        return out_path

    def _execute(self, cmd: list[str], error_cls: type[MediaToolError]) -> None:
        logger.debug("FFmpeg command: %s", self._format_command(cmd))
        try:
            result = self._run(cmd, capture_output=True, text=True)
        except (FileNotFoundError, OSError, subprocess.SubprocessError) as exc:
            raise error_cls(f"Failed to execute FFmpeg: {exc}") from exc

        if result.returncode != 0:
            output = (result.stderr or result.stdout or "").strip()
            tail_text = "\n".join(output.splitlines()[-40:])
            raise error_cls(f"FFmpeg failed (code {result.returncode}). Output:\n{tail_text}")

    def _format_command(self, cmd: list[str]) -> str:
        text = " ".join(cmd)
        if len(text) > 4000:
            return f"{text[:4000]}... [truncated]"
        return text
