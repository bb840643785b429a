#!/usr/bin/env python3
from __future__ import annotations

import argparse
import logging
import os
import sys
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import Path

from dotenv import load_dotenv

from longform_runner.config import RunnerConfig
from longform_runner.errors import ConfigError, RunnerAuthError
from longform_runner.operators.longform_operator import LongFormPipeline
from longform_runner.operators.project_store import ProjectRepository, ProjectStore
from longform_runner.operators.runner_auth import authenticate
from longform_runner.utils.ffmpeg_utils import FFmpegMediaTools
from longform_runner.utils.storage import build_storage_gateway


logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def _log_tick_failure(future: Future) -> None:
    if future.cancelled():
        return
    exc = future.exception()
    if exc is not None:
        logger.error("Poll tick crashed", exc_info=exc)


class PollLoop:
    """
    Periodically picks up due projects and runs them one at a time.

    Ticks run on a single-slot executor. If the previous tick is still in
    flight when the timer fires, the new tick is skipped, not queued.
    """

    def __init__(
        self,
        store: ProjectRepository,
        pipeline: LongFormPipeline,
        interval_seconds: float,
        executor: ThreadPoolExecutor | None = None,
    ):
        self.store = store
        self.pipeline = pipeline
        self.interval_seconds = interval_seconds
        self._executor = executor or ThreadPoolExecutor(
            max_workers=1, thread_name_prefix="longform-poll"
        )
        self._pending: Future | None = None
        self._stop = threading.Event()

    @property
    def busy(self) -> bool:
        return self._pending is not None and not self._pending.done()

    def tick(self) -> int:
        try:
            projects = self.store.fetch_due_projects()
        except Exception:
            logger.exception("Polling error")
            return 0

        if not projects:
            return 0

        logger.info("Found %d long-form project(s)", len(projects))
        try:
            for project in projects:
                self.store.claim(project.id)
        except Exception:
            logger.exception("Polling error while claiming projects")
            return 0

        processed = 0
        for project in projects:
            self.pipeline.process_project(project)
            processed += 1
        return processed

    def submit_tick(self) -> Future | None:
        if self.busy:
            logger.debug("Previous poll still running, skipping tick")
            return None
        self._pending = self._executor.submit(self.tick)
        self._pending.add_done_callback(_log_tick_failure)
        return self._pending

    def run_forever(self) -> None:
        self.submit_tick()
        while not self._stop.wait(self.interval_seconds):
            self.submit_tick()

    def stop(self) -> None:
        self._stop.set()

    def shutdown(self, wait: bool = True) -> None:
        self.stop()
        self._executor.shutdown(wait=wait)


def _attach_file_handler(log_file_path: Path, level: int) -> None:
    log_file_path.parent.mkdir(parents=True, exist_ok=True)
    root_logger = logging.getLogger()
    if any(
        isinstance(handler, logging.FileHandler)
        and getattr(handler, "baseFilename", None) == str(log_file_path.resolve())
        for handler in root_logger.handlers
    ):
        return

    file_handler = logging.FileHandler(log_file_path, encoding="utf-8")
    file_handler.setLevel(level)
    file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root_logger.addHandler(file_handler)


def configure_logging(level_name: str | None = None) -> None:
    level_name = (level_name or os.getenv("LOG_LEVEL", "INFO")).upper()
    level = getattr(logging, level_name, logging.INFO)
    logging.basicConfig(level=level, format=LOG_FORMAT, stream=sys.stdout)

    log_file = os.getenv("LONGFORM_LOG_FILE", "").strip()
    if log_file:
        _attach_file_handler(Path(log_file), level)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Long-form video assembly runner")
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run a single poll tick and exit",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help="Override LOG_LEVEL (DEBUG, INFO, WARNING, ...)",
    )
    return parser.parse_args(argv)


def build_poll_loop(config: RunnerConfig, media: FFmpegMediaTools) -> PollLoop:
    context = authenticate(config)
    store = ProjectStore(context)
    pipeline = LongFormPipeline(context, store, build_storage_gateway(context), media)
    return PollLoop(store, pipeline, config.poll_interval_seconds)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    load_dotenv(Path.cwd() / ".env", override=True)
    configure_logging(args.log_level)

    logger.info("Longform Runner (with filters + auto music adjustment)")
    try:
        config = RunnerConfig.from_env()
    except ConfigError as e:
        logger.error(f"Invalid configuration: {e}")
        return 1

    logger.info("Bucket: %s (%s)", config.storage_bucket, config.storage_backend)
    logger.info("Max clip seconds: %s", config.max_clip_seconds)
    logger.info("Poll interval ms: %s", config.poll_interval_ms)

    media = FFmpegMediaTools(
        ffmpeg_bin=config.ffmpeg_bin,
        ffprobe_bin=config.ffprobe_bin,
        max_clip_seconds=config.max_clip_seconds,
    )
    if not media.check_available():
        logger.error("ffmpeg/ffprobe not found. Install ffmpeg or set FFMPEG_BIN/FFPROBE_BIN")
        return 1

    try:
        loop = build_poll_loop(config, media)
    except (RunnerAuthError, ConfigError) as e:
        logger.error(f"Fatal: {e}")
        return 1

    if args.once:
        loop.tick()
        loop.shutdown()
        return 0

    try:
        loop.run_forever()
    except KeyboardInterrupt:
        logger.info("Stopping runner")
    finally:
        loop.shutdown(wait=False)
    return 0


if __name__ == "__main__":
    sys.exit(main())
