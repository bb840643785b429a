from __future__ import annotations

from dataclasses import dataclass

from longform_runner.config import RunnerConfig


@dataclass(frozen=True)
class RunnerContext:
    """Everything a pipeline stage needs to reach the project store and storage."""

    config: RunnerConfig
    supabase_url: str
    service_role_key: str
    user_id: str

    def rest_url(self, endpoint: str) -> str:
        return f"{self.supabase_url.rstrip('/')}/rest/v1/{endpoint.lstrip('/')}"

    def auth_headers(self) -> dict[str, str]:
        return {
            "apikey": self.service_role_key,
            "Authorization": f"Bearer {self.service_role_key}",
        }

    def final_video_path(self, project_id: str) -> str:
        return f"{self.user_id}/longform/{project_id}/final.mp4"
