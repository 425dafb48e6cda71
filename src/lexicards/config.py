"""Settings loaded from the environment and an optional .env file."""

import logging
import os
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator

ENV_PREFIX = "LEXICARDS_"


class Settings(BaseModel):
    """Runtime settings.

    Attributes:
        db_path: DuckDB file used by the command-line interface.
        log_level: Name of the logging level.
        cram_requeue_offset: How far ahead a missed cram card is put back.
    """

    db_path: str = Field(default="lexicards.duckdb", description="DuckDB file path")
    log_level: str = Field(default="WARNING", description="Logging level name")
    cram_requeue_offset: int = Field(
        default=2, ge=0, description="Queue position for missed cram cards"
    )

    @field_validator("log_level")
    @classmethod
    def _known_level(cls, value: str) -> str:
        level = value.upper()
        if not isinstance(logging.getLevelName(level), int):
            raise ValueError(f"Unknown log level: {value}")
        return level


def load_settings(env_file: Optional[str] = None) -> Settings:
    """Reads LEXICARDS_* variables, after loading a .env file if present.

    Raises:
        pydantic.ValidationError: If a variable holds an invalid value.
    """
    load_dotenv(env_file)
    values = {}
    for name in Settings.model_fields:
        value = os.getenv(f"{ENV_PREFIX}{name.upper()}")
        if value:
            values[name] = value
    return Settings(**values)
