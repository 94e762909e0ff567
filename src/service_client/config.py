"""
Environment based configuration.

Every setting is read from a ``SERVICE_CLIENT_``-prefixed environment
variable or a ``.env`` file found next to the package or in one of its
parent directories.
"""

from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

from .models import DEFAULT_POLLING_INTERVAL_SECONDS, DEFAULT_POLLING_TIMEOUT_SECONDS

DEFAULT_BASE_URL = "https://superface.ai"
DEFAULT_TIMEOUT_S = 10.0


def _find_env_file() -> str | None:
    cur = Path(__file__).resolve()
    for parent in [cur.parent, *cur.parents]:
        candidate = parent / ".env"
        if candidate.exists():
            return str(candidate)
    return None


class ClientSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="SERVICE_CLIENT_",
        env_file=_find_env_file() or ".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    base_url: str = DEFAULT_BASE_URL
    refresh_token: str | None = None
    timeout_s: float = DEFAULT_TIMEOUT_S
    polling_timeout_seconds: float = DEFAULT_POLLING_TIMEOUT_SECONDS
    polling_interval_seconds: float = DEFAULT_POLLING_INTERVAL_SECONDS


def get_settings() -> ClientSettings:
    """Load settings from the current environment."""
    return ClientSettings()
