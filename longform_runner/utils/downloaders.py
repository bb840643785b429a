"""Fetching reference videos and background music from public URLs."""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Callable
from urllib.parse import urlparse

import requests
import yt_dlp
from yt_dlp.utils import DownloadError as YtDlpDownloadError

from longform_runner.errors import MusicDownloadError, ReferenceDownloadError

logger = logging.getLogger(__name__)


REFERENCE_FORMAT = "bestvideo[ext=mp4]+bestaudio[ext=m4a]/best[ext=mp4]/best"
BROWSER_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)

YoutubeDLFactory = Callable[[dict[str, Any]], Any]


def _output_template(out_path: Path) -> str:
    return str(out_path.parent / f"{out_path.stem}.%(ext)s")


def _find_sibling_output(out_path: Path) -> Path | None:
    prefix = f"{out_path.stem}."
    candidates = sorted(
        p
        for p in out_path.parent.iterdir()
        if p.is_file() and p.name.startswith(prefix) and not p.name.endswith(".part")
    )
    return candidates[0] if candidates else None


def download_reference_video(
    url: str,
    out_path: Path,
    *,
    ydl_factory: YoutubeDLFactory = yt_dlp.YoutubeDL,
    ffmpeg_location: str | None = None,
) -> Path:
    out_path.parent.mkdir(parents=True, exist_ok=True)
    ydl_opts: dict[str, Any] = {
        "format": REFERENCE_FORMAT,
        "merge_output_format": "mp4",
        "outtmpl": _output_template(out_path),
        "noplaylist": True,
        "quiet": True,
        "no_warnings": True,
    }
    if ffmpeg_location:
        ydl_opts["ffmpeg_location"] = ffmpeg_location

    try:
        with ydl_factory(ydl_opts) as ydl:
            ydl.download([url])
    except YtDlpDownloadError as exc:
        raise ReferenceDownloadError(f"yt-dlp failed for {url}: {exc}") from exc

    if not out_path.exists():
        found = _find_sibling_output(out_path)
        if found is not None:
            found.rename(out_path)
    if not out_path.exists():
        raise ReferenceDownloadError("yt-dlp did not produce mp4")
    return out_path


def _music_headers(url: str) -> dict[str, str]:
    host = urlparse(url).hostname or ""
    headers = {"User-Agent": "Mozilla/5.0"}
    # mixkit rejects requests without a referer
    if "mixkit.co" in host:
        headers["Referer"] = "https://mixkit.co/"
    return headers


def _download_direct(url: str, out_path: Path, session: requests.Session, timeout: float) -> Path:
    response = session.get(
        url,
        headers={"User-Agent": BROWSER_USER_AGENT, "Accept": "audio/*,*/*;q=0.9"},
        stream=True,
        timeout=timeout,
    )
    with response:
        if not response.ok:
            body = response.text or ""
            raise MusicDownloadError(
                f"Music download blocked ({response.status_code}): {body[:200]}"
            )
        with open(out_path, "wb") as fh:
            for chunk in response.iter_content(chunk_size=1024 * 256):
                if chunk:
                    fh.write(chunk)
    return out_path


def download_music(
    url: str,
    out_path: Path,
    *,
    session: requests.Session | None = None,
    timeout: float = 60.0,
    ydl_factory: YoutubeDLFactory = yt_dlp.YoutubeDL,
    ffmpeg_location: str | None = None,
) -> Path:
    """
    Download a background music track.

    Direct links are fetched over HTTP first. Hosts that block plain clients
    (e.g. CDN "AccessDenied" responses) fall back to yt-dlp audio extraction,
    which always produces an .mp3 next to out_path.
    """
    out_path.parent.mkdir(parents=True, exist_ok=True)
    try:
        return _download_direct(url, out_path, session or requests.Session(), timeout)
    except (requests.RequestException, MusicDownloadError, OSError) as exc:
        logger.warning("Direct music download failed, trying yt-dlp... (%s)", exc)

    mp3_path = out_path if out_path.suffix.lower() == ".mp3" else out_path.with_name(out_path.name + ".mp3")
    ydl_opts: dict[str, Any] = {
        "format": "bestaudio/best",
        "outtmpl": _output_template(mp3_path),
        "noplaylist": True,
        "quiet": True,
        "no_warnings": True,
        "http_headers": _music_headers(url),
        "postprocessors": [
            {
                "key": "FFmpegExtractAudio",
                "preferredcodec": "mp3",
                "preferredquality": "0",
            }
        ],
    }
    if ffmpeg_location:
        ydl_opts["ffmpeg_location"] = ffmpeg_location

    try:
        with ydl_factory(ydl_opts) as ydl:
            ydl.download([url])
    except YtDlpDownloadError as exc:
        raise MusicDownloadError(f"yt-dlp failed for {url}: {exc}") from exc

    if not mp3_path.exists():
        raise MusicDownloadError("yt-dlp did not produce an audio file")
    return mp3_path
