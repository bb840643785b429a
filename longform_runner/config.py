from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping

from longform_runner.errors import ConfigError


DEFAULT_FUNCTION_URL = "https://qhzwksaeogpwgvttcxej.supabase.co/functions/v1"
DEFAULT_POLL_INTERVAL_MS = 30000
DEFAULT_MAX_CLIP_SECONDS = 10.0
DEFAULT_STORAGE_BUCKET = "videos"
STORAGE_BACKENDS = ("supabase", "gcs")


def _env_str(env: Mapping[str, str], name: str, default: str) -> str:
    value = env.get(name, "")
    value = value.strip() if value else ""
    return value or default


def _env_number(env: Mapping[str, str], name: str, default: float, cast=float):
    raw = env.get(name, "")
    if raw is None or not str(raw).strip():
        return default
    try:
        value = cast(str(raw).strip())
    except ValueError as exc:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from exc
    if value <= 0:
        raise ConfigError(f"{name} must be positive, got {raw!r}")
    return value


@dataclass(frozen=True)
class RunnerConfig:
    api_key: str
    function_url: str = DEFAULT_FUNCTION_URL
    poll_interval_ms: int = DEFAULT_POLL_INTERVAL_MS
    max_clip_seconds: float = DEFAULT_MAX_CLIP_SECONDS
    storage_bucket: str = DEFAULT_STORAGE_BUCKET
    storage_backend: str = "supabase"
    ffmpeg_bin: str = "ffmpeg"
    ffprobe_bin: str = "ffprobe"
    work_dir: Path = Path("downloads") / "longform"
    upload_retry_base_seconds: float = 1.0
    upload_max_attempts: int = 5
    stale_claim_minutes: float = 5.0
    http_timeout_seconds: float = 60.0
    gcp_credentials: str = ""

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> RunnerConfig:
        env = os.environ if env is None else env

        api_key = _env_str(env, "RUNNER_API_KEY", "")
        if not api_key:
            raise ConfigError("RUNNER_API_KEY missing")

        storage_backend = _env_str(env, "STORAGE_BACKEND", "supabase").lower()
        if storage_backend not in STORAGE_BACKENDS:
            raise ConfigError(
                f"STORAGE_BACKEND must be one of {', '.join(STORAGE_BACKENDS)}, "
                f"got {storage_backend!r}"
            )

        return cls(
            api_key=api_key,
            function_url=_env_str(env, "SUPABASE_FUNCTION_URL", DEFAULT_FUNCTION_URL).rstrip("/"),
            poll_interval_ms=_env_number(
                env, "LONGFORM_POLL_INTERVAL_MS", DEFAULT_POLL_INTERVAL_MS, cast=int
            ),
            max_clip_seconds=_env_number(env, "MAX_CLIP_SECONDS", DEFAULT_MAX_CLIP_SECONDS),
            storage_bucket=_env_str(env, "SUPABASE_STORAGE_BUCKET", DEFAULT_STORAGE_BUCKET),
            storage_backend=storage_backend,
            ffmpeg_bin=_env_str(env, "FFMPEG_BIN", "ffmpeg"),
            ffprobe_bin=_env_str(env, "FFPROBE_BIN", "ffprobe"),
            work_dir=Path(
                _env_str(env, "LONGFORM_WORK_DIR", str(Path("downloads") / "longform"))
            ).absolute(),
            upload_retry_base_seconds=_env_number(env, "UPLOAD_RETRY_BASE_SECONDS", 1.0),
            upload_max_attempts=_env_number(env, "UPLOAD_MAX_ATTEMPTS", 5, cast=int),
            stale_claim_minutes=_env_number(env, "STALE_CLAIM_MINUTES", 5.0),
            http_timeout_seconds=_env_number(env, "HTTP_TIMEOUT_SECONDS", 60.0),
            gcp_credentials=env.get("GCP_CREDENTIALS", "") or "",
        )

    @property
    def poll_interval_seconds(self) -> float:
        return self.poll_interval_ms / 1000.0
