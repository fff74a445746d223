"""Runtime configuration for analysis runs.

Values come from environment variables, optionally loaded from a `.env`
file at the project root. Invalid numeric values are logged and replaced by
their defaults.
"""

import logging
import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field

env_path = Path(__file__).parent.parent / ".env"
if env_path.exists():
    load_dotenv(env_path)

logger = logging.getLogger(__name__)

# Batch budget defaults, sized so one request stays within the completion
# service's practical context and latency limits.
DEFAULT_MAX_SIZE_UNITS = 15000
DEFAULT_MAX_COUNT = 35

DEFAULT_COMPLETION_MODEL = "gpt-4o-mini"
DEFAULT_COMPLETION_TIMEOUT_SECONDS = 45.0
DEFAULT_STATEMENT_TIMEOUT_MS = 30000
DEFAULT_MIRROR_TIMEOUT_SECONDS = 10.0
DEFAULT_HISTORY_LIMIT = 10
DEFAULT_LOW_CONFIDENCE_THRESHOLD = 0.5

_TRUTHY = {"1", "true", "yes", "on"}


def _get_env_int(key: str, default: int, minimum: int = 1, maximum: Optional[int] = None) -> int:
    """Get an integer from the environment, clamped to [minimum, maximum]."""
    val = os.getenv(key)
    if val is None or val.strip() == "":
        return default
    try:
        number = int(val)
    except ValueError:
        logger.warning(f"Invalid integer for {key}: {val!r}, using {default}")
        return default
    if number < minimum:
        return minimum
    if maximum is not None and number > maximum:
        return maximum
    return number


def _get_env_float(key: str, default: float, minimum: float = 0.0) -> float:
    val = os.getenv(key)
    if val is None or val.strip() == "":
        return default
    try:
        number = float(val)
    except ValueError:
        logger.warning(f"Invalid number for {key}: {val!r}, using {default}")
        return default
    return max(number, minimum)


def _get_env_bool(key: str, default: bool = False) -> bool:
    val = os.getenv(key)
    if val is None:
        return default
    return val.strip().lower() in _TRUTHY


class AnalysisSettings(BaseModel):
    """Settings shared by the orchestrator, clients and storage."""

    database_url: str = "postgresql://localhost:5432/opinion_topics"
    statement_timeout_ms: int = DEFAULT_STATEMENT_TIMEOUT_MS

    openai_api_key: Optional[str] = None
    completion_model: str = DEFAULT_COMPLETION_MODEL
    completion_timeout_seconds: float = DEFAULT_COMPLETION_TIMEOUT_SECONDS
    completion_max_tokens: int = 4000

    max_size_units: int = Field(default=DEFAULT_MAX_SIZE_UNITS, ge=1)
    max_count: int = Field(default=DEFAULT_MAX_COUNT, ge=1)
    low_confidence_threshold: float = DEFAULT_LOW_CONFIDENCE_THRESHOLD

    mirror_url: Optional[str] = None
    mirror_auth_token: Optional[str] = None
    mirror_timeout_seconds: float = DEFAULT_MIRROR_TIMEOUT_SECONDS
    mirror_disable_sync: bool = False
    mirror_history_limit: int = DEFAULT_HISTORY_LIMIT


def load_settings() -> AnalysisSettings:
    """Build settings from the current environment."""
    return AnalysisSettings(
        database_url=os.getenv("DATABASE_URL", "postgresql://localhost:5432/opinion_topics"),
        statement_timeout_ms=_get_env_int("DB_STATEMENT_TIMEOUT_MS", DEFAULT_STATEMENT_TIMEOUT_MS, minimum=1000),
        openai_api_key=os.getenv("OPENAI_API_KEY"),
        completion_model=os.getenv("COMPLETION_MODEL", DEFAULT_COMPLETION_MODEL),
        completion_timeout_seconds=_get_env_float(
            "COMPLETION_TIMEOUT_SECONDS", DEFAULT_COMPLETION_TIMEOUT_SECONDS, minimum=1.0
        ),
        completion_max_tokens=_get_env_int("COMPLETION_MAX_TOKENS", 4000, minimum=256, maximum=16000),
        max_size_units=_get_env_int("AI_INCREMENTAL_MAX_TOKENS", DEFAULT_MAX_SIZE_UNITS, minimum=1000, maximum=100000),
        max_count=_get_env_int("AI_INCREMENTAL_MAX_OPINIONS", DEFAULT_MAX_COUNT, minimum=1, maximum=200),
        low_confidence_threshold=_get_env_float("LOW_CONFIDENCE_THRESHOLD", DEFAULT_LOW_CONFIDENCE_THRESHOLD),
        mirror_url=os.getenv("MIRROR_URL"),
        mirror_auth_token=os.getenv("MIRROR_AUTH_TOKEN"),
        mirror_timeout_seconds=_get_env_float("MIRROR_TIMEOUT_SECONDS", DEFAULT_MIRROR_TIMEOUT_SECONDS, minimum=1.0),
        mirror_disable_sync=_get_env_bool("MIRROR_DISABLE_SYNC"),
        mirror_history_limit=_get_env_int("MIRROR_HISTORY_LIMIT", DEFAULT_HISTORY_LIMIT, minimum=1, maximum=100),
    )
