from __future__ import annotations

import logging

import requests

from longform_runner.config import RunnerConfig
from longform_runner.context import RunnerContext
from longform_runner.errors import RunnerAuthError

logger = logging.getLogger(__name__)


REQUIRED_AUTH_FIELDS = ("supabase_url", "service_role_key", "user_id")


def authenticate(
    config: RunnerConfig,
    session: requests.Session | None = None,
) -> RunnerContext:
    """Exchange the runner API key for project store and storage access."""
    logger.info("Authenticating via runner-auth...")
    session = session or requests.Session()
    try:
        response = session.post(
            f"{config.function_url}/runner-auth",
            json={"api_key": config.api_key},
            timeout=config.http_timeout_seconds,
        )
    except requests.RequestException as exc:
        raise RunnerAuthError(f"runner-auth failed: {exc}") from exc

    if not response.ok:
        raise RunnerAuthError(f"runner-auth failed: {response.text}")

    try:
        data = response.json()
    except ValueError as exc:
        raise RunnerAuthError("runner-auth returned invalid JSON") from exc

    missing = [name for name in REQUIRED_AUTH_FIELDS if not data.get(name)]
    if missing:
        raise RunnerAuthError(f"runner-auth response missing: {', '.join(missing)}")

    logger.info("Auth OK (user %s)", data["user_id"])
    return RunnerContext(
        config=config,
        supabase_url=str(data["supabase_url"]).rstrip("/"),
        service_role_key=str(data["service_role_key"]),
        user_id=str(data["user_id"]),
    )
