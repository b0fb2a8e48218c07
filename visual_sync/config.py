"""Runtime configuration for the visual tests sync engine."""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Final

from dotenv import load_dotenv
from pydantic import AnyHttpUrl, BaseModel, Field, ValidationError

# Load environment variables from .env file
env_path = Path(__file__).parent.parent / ".env"
load_dotenv(dotenv_path=env_path)

DEFAULT_BASE_URL: Final[str] = "https://www.chromatic.com"


class SettingsError(RuntimeError):
    """Raised when application configuration is invalid or incomplete."""


class Settings(BaseModel):
    """Runtime settings loaded from environment variables."""

    base_url: AnyHttpUrl = DEFAULT_BASE_URL
    project_id: str | None = None
    access_token: str | None = None
    poll_interval: float = Field(default=5.0, gt=0)
    state_write_delay: float = Field(default=5.0, ge=0)
    onboarding_override: bool = False

    @property
    def normalized_base_url(self) -> str:
        """Return the service base URL without a trailing slash."""
        return str(self.base_url).rstrip("/")

    @property
    def graphql_url(self) -> str:
        return f"{self.normalized_base_url}/api"

    def require_project_id(self) -> str:
        """Ensure a project is linked and return its id."""

        if not self.project_id:
            raise SettingsError(
                "No project is linked. Set the VISUAL_SYNC_PROJECT_ID environment variable."
            )
        return self.project_id


_TRUE_VALUES: Final[set[str]] = {"1", "true", "yes", "on"}


def _parse_bool_env(raw_value: str | None, *, default: bool = False) -> bool:
    """Convert an environment variable string to a boolean value."""

    if raw_value is None:
        return default
    return raw_value.strip().lower() in _TRUE_VALUES


def _parse_seconds_env(name: str, default: float) -> float:
    raw_value = os.getenv(name)
    if raw_value is None or not raw_value.strip():
        return default
    try:
        return float(raw_value)
    except ValueError as exc:
        raise SettingsError(f"Invalid value for {name}. It must be a number of seconds.") from exc


def _build_settings() -> Settings:
    poll_interval = _parse_seconds_env("VISUAL_SYNC_POLL_INTERVAL", 5.0)
    state_write_delay = _parse_seconds_env("VISUAL_SYNC_STATE_WRITE_DELAY", 5.0)

    try:
        return Settings(
            base_url=os.getenv("VISUAL_SYNC_BASE_URL") or DEFAULT_BASE_URL,
            project_id=os.getenv("VISUAL_SYNC_PROJECT_ID") or None,
            access_token=os.getenv("VISUAL_SYNC_ACCESS_TOKEN") or None,
            poll_interval=poll_interval,
            state_write_delay=state_write_delay,
            onboarding_override=_parse_bool_env(os.getenv("VISUAL_SYNC_ONBOARDING_OVERRIDE")),
        )
    except ValidationError as exc:
        raise SettingsError("Invalid application configuration.") from exc


@lru_cache(maxsize=1)
def _cached_settings() -> Settings:
    return _build_settings()


def get_settings() -> Settings:
    """Retrieve cached application settings."""
    return _cached_settings()


def reset_settings_cache() -> None:
    """Clear the cached settings (primarily for tests)."""
    _cached_settings.cache_clear()
