from __future__ import annotations

import json
import logging
import time
from pathlib import Path
from typing import Callable, Protocol, TypeVar
from urllib.parse import quote

import requests
from google.cloud import storage
from google.oauth2 import service_account
from tenacity import Retrying, retry_if_exception, stop_after_attempt

from longform_runner.context import RunnerContext
from longform_runner.errors import ConfigError, StorageError, TransientUploadError


logger = logging.getLogger(__name__)

T = TypeVar("T")

TRANSIENT_SIGNATURES = (
    "bad record mac",
    "econnreset",
    "connection reset",
    "etimedout",
    "timed out",
    "timeout",
    "socket hang up",
    "epipe",
    "broken pipe",
    "fetch failed",
    "connection aborted",
)

CONTENT_TYPES = {
    ".mp4": "video/mp4",
    ".mp3": "audio/mpeg",
}


class StorageGateway(Protocol):
    def download(self, remote_path: str, local_path: Path) -> Path: ...

    def upload(self, remote_path: str, local_path: Path) -> str: ...


def content_type_for(path: str) -> str:
    return CONTENT_TYPES.get(Path(path).suffix.lower(), "application/octet-stream")


def is_transient_upload_error(exc: BaseException) -> bool:
    if isinstance(exc, TransientUploadError):
        return True
    if isinstance(exc, (ConnectionError, TimeoutError)):
        return True
    if isinstance(exc, (requests.ConnectionError, requests.Timeout)):
        return True
    message = str(exc).lower()
    return any(signature in message for signature in TRANSIENT_SIGNATURES)


def upload_with_retry(
    upload_once: Callable[[], T],
    *,
    max_attempts: int = 5,
    base_seconds: float = 1.0,
    sleep: Callable[[float], None] = time.sleep,
    label: str = "upload",
) -> T:
    """
    Run an upload, retrying transient network failures.

    Waits base_seconds * attempt**2 between attempts. Non-transient errors
    are raised straight away; the last transient error is raised once
    max_attempts is exhausted.
    """

    def _log_retry(retry_state) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        logger.warning(
            "Upload attempt %d failed for %s (%s). Retrying in %.1fs...",
            retry_state.attempt_number,
            label,
            exc,
            retry_state.next_action.sleep if retry_state.next_action else 0.0,
        )

    retrying = Retrying(
        retry=retry_if_exception(is_transient_upload_error),
        stop=stop_after_attempt(max(1, max_attempts)),
        wait=lambda retry_state: base_seconds * retry_state.attempt_number**2,
        sleep=sleep,
        before_sleep=_log_retry,
        reraise=True,
    )
    return retrying(upload_once)


class SupabaseStorage:
    def __init__(
        self,
        supabase_url: str,
        service_role_key: str,
        bucket: str,
        *,
        session: requests.Session | None = None,
        timeout: float = 60.0,
        max_attempts: int = 5,
        retry_base_seconds: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.supabase_url = supabase_url.rstrip("/")
        self.bucket = bucket
        self._service_role_key = service_role_key
        self._session = session or requests.Session()
        self._timeout = timeout
        self._max_attempts = max_attempts
        self._retry_base_seconds = retry_base_seconds
        self._sleep = sleep

    def object_url(self, remote_path: str) -> str:
        encoded = "/".join(quote(segment, safe="") for segment in remote_path.split("/"))
        return f"{self.supabase_url}/storage/v1/object/{self.bucket}/{encoded}"

    def _headers(self) -> dict[str, str]:
        return {
            "apikey": self._service_role_key,
            "Authorization": f"Bearer {self._service_role_key}",
        }

    def download(self, remote_path: str, local_path: Path) -> Path:
        logger.info("Storage download: %s", remote_path)
        local_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            response = self._session.get(
                self.object_url(remote_path),
                headers=self._headers(),
                stream=True,
                timeout=self._timeout,
            )
        except requests.RequestException as exc:
            raise StorageError(f"Download failed: {exc}") from exc

        with response:
            if not response.ok:
                raise StorageError(f"Download failed: {response.text}")
            with open(local_path, "wb") as fh:
                for chunk in response.iter_content(chunk_size=1024 * 1024):
                    if chunk:
                        fh.write(chunk)
        return local_path

    def upload(self, remote_path: str, local_path: Path) -> str:
        logger.info("Storage upload: %s", remote_path)
        url = self.object_url(remote_path)
        headers = {
            **self._headers(),
            "Content-Type": content_type_for(remote_path),
            "x-upsert": "true",
        }

        def _put() -> str:
            try:
                with open(local_path, "rb") as fh:
                    response = self._session.put(
                        url, data=fh, headers=headers, timeout=self._timeout
                    )
            except requests.RequestException as exc:
                if is_transient_upload_error(exc):
                    raise TransientUploadError(str(exc)) from exc
                raise StorageError(f"Upload failed: {exc}") from exc

            if not response.ok:
                raise StorageError(f"Upload failed ({response.status_code}): {response.text}")
            return remote_path

        return upload_with_retry(
            _put,
            max_attempts=self._max_attempts,
            base_seconds=self._retry_base_seconds,
            sleep=self._sleep,
            label=remote_path,
        )


class GCSStorage:
    def __init__(
        self,
        bucket_name: str,
        *,
        credentials_json: str = "",
        client: storage.Client | None = None,
        max_attempts: int = 5,
        retry_base_seconds: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.bucket_name = bucket_name
        self._credentials_json = credentials_json
        self._storage_client = client
        self._max_attempts = max_attempts
        self._retry_base_seconds = retry_base_seconds
        self._sleep = sleep

    def _get_storage_client(self) -> storage.Client:
        if self._storage_client:
            return self._storage_client

        if not self._credentials_json:
            self._storage_client = storage.Client()
            return self._storage_client

        try:
            credentials_info = json.loads(self._credentials_json)
        except json.JSONDecodeError as exc:
            raise ConfigError("Invalid GCP_CREDENTIALS JSON") from exc

        credentials = service_account.Credentials.from_service_account_info(
            credentials_info
        )
        self._storage_client = storage.Client(
            credentials=credentials, project=credentials_info.get("project_id")
        )
        return self._storage_client

    def _blob(self, remote_path: str):
        return self._get_storage_client().bucket(self.bucket_name).blob(remote_path)

    def download(self, remote_path: str, local_path: Path) -> Path:
        logger.info("Storage download: gs://%s/%s", self.bucket_name, remote_path)
        local_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            self._blob(remote_path).download_to_filename(str(local_path))
        except Exception as exc:
            raise StorageError(
                f"Download failed: gs://{self.bucket_name}/{remote_path}: {exc}"
            ) from exc
        return local_path

    def upload(self, remote_path: str, local_path: Path) -> str:
        logger.info("Storage upload: gs://%s/%s", self.bucket_name, remote_path)

        def _upload() -> str:
            try:
                self._blob(remote_path).upload_from_filename(
                    str(local_path), content_type=content_type_for(remote_path)
                )
            except Exception as exc:
                if is_transient_upload_error(exc):
                    raise TransientUploadError(str(exc)) from exc
                raise StorageError(
                    f"Upload failed: gs://{self.bucket_name}/{remote_path}: {exc}"
                ) from exc
            return remote_path

        return upload_with_retry(
            _upload,
            max_attempts=self._max_attempts,
            base_seconds=self._retry_base_seconds,
            sleep=self._sleep,
            label=remote_path,
        )


def build_storage_gateway(context: RunnerContext) -> StorageGateway:
    config = context.config
    if config.storage_backend == "gcs":
        return GCSStorage(
            config.storage_bucket,
            credentials_json=config.gcp_credentials,
            max_attempts=config.upload_max_attempts,
            retry_base_seconds=config.upload_retry_base_seconds,
        )
    return SupabaseStorage(
        context.supabase_url,
        context.service_role_key,
        config.storage_bucket,
        timeout=config.http_timeout_seconds,
        max_attempts=config.upload_max_attempts,
        retry_base_seconds=config.upload_retry_base_seconds,
    )
