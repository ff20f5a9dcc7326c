"""
Runtime settings for Taskflow.

Values come from environment variables prefixed with ``TASKFLOW_`` or from a
``.env`` file in the working directory.
"""

from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_DATA_DIR = Path("~/.taskflow")


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_prefix="TASKFLOW_",
        env_file=".env",
        extra="ignore",
    )

    database_url: str = f"sqlite:///{DEFAULT_DATA_DIR / 'tasks.db'}"
    debug: bool = False

    # Logging
    log_level: str | None = None
    log_json: bool = False

    # Search
    fuzzy_threshold: int = Field(default=60, ge=0, le=100)
    search_history_enabled: bool = True
    max_search_history: int = Field(default=50, ge=1)

    @field_validator("database_url")
    @classmethod
    def expand_sqlite_path(cls, value: str) -> str:
        # sqlite:///~/x.db -> sqlite:////home/user/x.db
        prefix = "sqlite:///"
        if value.startswith(prefix) and "~" in value:
            path = Path(value[len(prefix):]).expanduser()
            return f"{prefix}{path}"
        return value


@lru_cache
def get_settings() -> Settings:
    return Settings()
