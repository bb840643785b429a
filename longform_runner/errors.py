from __future__ import annotations


class LongFormError(Exception):
    pass


class ConfigError(LongFormError):
    pass


class RunnerAuthError(LongFormError):
    pass


class ProjectStoreError(LongFormError):
    pass


class InvalidInputError(LongFormError):
    pass


class VoiceoverMissingError(InvalidInputError):
    def __init__(self, message: str = "voiceover_path missing"):
        super().__init__(message)


class NoSourcesDownloadedError(InvalidInputError):
    def __init__(self, attempted: int):
        self.attempted = attempted
        super().__init__(f"No reference videos downloaded ({attempted} attempted)")


class MediaToolError(LongFormError):
    pass


class SourceTooShortError(MediaToolError):
    def __init__(self, source_path: str, duration: float):
        self.source_path = source_path
        self.duration = duration
        super().__init__(
            f"Source video too short/unreadable: {source_path} ({duration:.2f}s)"
        )


class RenderFailedError(MediaToolError):
    pass


class ConcatFailedError(MediaToolError):
    pass


class MuxFailedError(MediaToolError):
    pass


class StorageError(LongFormError):
    pass


class TransientUploadError(StorageError):
    pass


class DownloadError(LongFormError):
    pass


class ReferenceDownloadError(DownloadError):
    pass


class MusicDownloadError(DownloadError):
    pass
