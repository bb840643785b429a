from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Protocol

import requests

from longform_runner.context import RunnerContext
from longform_runner.errors import ProjectStoreError
from longform_runner.models.longform_models import (
    LongFormProject,
    ProjectStatus,
    ProjectUpdate,
)

logger = logging.getLogger(__name__)


PROJECTS_TABLE = "long_form_projects"
CLAIM_PROGRESS = 1


class ProjectRepository(Protocol):
    def fetch_due_projects(self, now: datetime | None = None) -> list[LongFormProject]: ...

    def update_project(self, project_id: str, update: ProjectUpdate) -> None: ...

    def claim(self, project_id: str) -> None: ...


def format_timestamp(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    text = value.astimezone(timezone.utc).isoformat(timespec="milliseconds")
    return text.replace("+00:00", "Z")


def build_due_filter(user_id: str, cutoff: datetime) -> str:
    return (
        f"user_id=eq.{user_id}"
        f"&or=(status.eq.{ProjectStatus.PENDING_PROCESSING.value},"
        f"and(status.eq.{ProjectStatus.DOWNLOADING_CLIPS.value},"
        f"updated_at.lt.{format_timestamp(cutoff)}))"
        "&select=*"
        "&order=created_at.asc"
    )


def is_due(project: LongFormProject, now: datetime, stale_after: timedelta) -> bool:
    """Same selection as build_due_filter, evaluated locally."""
    if project.status == ProjectStatus.PENDING_PROCESSING:
        return True
    if project.status != ProjectStatus.DOWNLOADING_CLIPS or project.updated_at is None:
        return False
    updated_at = project.updated_at
    if updated_at.tzinfo is None:
        updated_at = updated_at.replace(tzinfo=timezone.utc)
    return updated_at < now - stale_after


class ProjectStore:
    def __init__(self, context: RunnerContext, session: requests.Session | None = None):
        self.context = context
        self._session = session or requests.Session()
        self._timeout = context.config.http_timeout_seconds

    @property
    def stale_after(self) -> timedelta:
        return timedelta(minutes=self.context.config.stale_claim_minutes)

    def _request(
        self,
        method: str,
        endpoint: str,
        payload: dict[str, Any] | None = None,
        prefer: str = "return=representation",
    ) -> Any:
        headers = {
            **self.context.auth_headers(),
            "Content-Type": "application/json",
            "Prefer": prefer,
        }
        try:
            response = self._session.request(
                method,
                self.context.rest_url(endpoint),
                headers=headers,
                json=payload,
                timeout=self._timeout,
            )
        except requests.RequestException as exc:
            raise ProjectStoreError(f"Supabase request failed: {exc}") from exc

        if not response.ok:
            raise ProjectStoreError(f"Supabase request failed: {response.text}")

        text = response.text
        if not text:
            return None
        try:
            return response.json()
        except ValueError:
            return text

    def fetch_due_projects(self, now: datetime | None = None) -> list[LongFormProject]:
        now = now or datetime.now(timezone.utc)
        endpoint = f"{PROJECTS_TABLE}?{build_due_filter(self.context.user_id, now - self.stale_after)}"
        rows = self._request("GET", endpoint) or []
        if not isinstance(rows, list):
            raise ProjectStoreError(f"Unexpected project query response: {rows!r}")
        return [LongFormProject.model_validate(row) for row in rows]

    def update_project(self, project_id: str, update: ProjectUpdate) -> None:
        payload = update.to_payload()
        if not payload:
            return
        self._request("PATCH", f"{PROJECTS_TABLE}?id=eq.{project_id}", payload)

    def claim(self, project_id: str) -> None:
        self.update_project(
            project_id,
            ProjectUpdate(
                status=ProjectStatus.DOWNLOADING_CLIPS,
                processing_progress=CLAIM_PROGRESS,
            ),
        )
