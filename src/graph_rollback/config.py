"""Runtime settings read from the environment.

Values come from process environment variables, with a ``.env`` file loaded
by the package on import.
"""

import logging
import os
from typing import Literal, Optional

from pydantic import BaseModel, Field, field_validator

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


class Settings(BaseModel):
    """Engine settings."""

    storage_backend: Literal["sqlite", "postgres"] = "sqlite"
    sqlite_db_path: str = "data/workflow_executions.db"
    postgres_dsn: Optional[str] = None
    agent_model: Optional[str] = None
    openai_api_key: Optional[str] = None
    base_url: Optional[str] = None
    command_timeout: float = Field(default=300.0, gt=0)
    slash_command_timeout: float = Field(default=600.0, gt=0)
    subscriber_queue_size: int = Field(default=100, ge=0)
    log_level: str = "INFO"

    @field_validator("storage_backend", mode="before")
    def lower_backend(cls, v):
        return v.lower() if isinstance(v, str) else v

    @field_validator("log_level")
    def validate_log_level(cls, v):
        level = v.upper()
        if not isinstance(logging.getLevelName(level), int):
            raise ValueError(f"Unknown log level: {v}")
        return level

    @classmethod
    def from_environment(cls) -> "Settings":
        """Build settings from environment variables.

        Environment Variables:
            STORAGE_BACKEND: Checkpoint store (sqlite, postgres)
            SQLITE_DB_PATH: Database file for the sqlite backend
            POSTGRES_DSN: Connection string for the postgres backend
            AGENT_MODEL: Default model id or alias for agent nodes
            OPENAI_API_KEY: API key passed to the model client
            BASE_URL: Base URL of an OpenAI-compatible endpoint
            COMMAND_TIMEOUT: Default command node timeout in seconds
            SLASH_COMMAND_TIMEOUT: Default slash command timeout in seconds
            SUBSCRIBER_QUEUE_SIZE: Per-subscriber event queue bound
            LOG_LEVEL: Root log level
        """
        values = {
            "storage_backend": os.getenv("STORAGE_BACKEND"),
            "sqlite_db_path": os.getenv("SQLITE_DB_PATH"),
            "postgres_dsn": os.getenv("POSTGRES_DSN"),
            "agent_model": os.getenv("AGENT_MODEL"),
            "openai_api_key": os.getenv("OPENAI_API_KEY"),
            "base_url": os.getenv("BASE_URL"),
            "command_timeout": os.getenv("COMMAND_TIMEOUT"),
            "slash_command_timeout": os.getenv("SLASH_COMMAND_TIMEOUT"),
            "subscriber_queue_size": os.getenv("SUBSCRIBER_QUEUE_SIZE"),
            "log_level": os.getenv("LOG_LEVEL"),
        }
        return cls(**{key: value for key, value in values.items() if value})


def configure_logging(settings: Optional[Settings] = None) -> None:
    """Configure root logging from settings."""
    settings = settings or Settings.from_environment()
    logging.basicConfig(level=settings.log_level, format=LOG_FORMAT)
