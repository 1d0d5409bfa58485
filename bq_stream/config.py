"""Environment-based configuration loading for the streaming demo."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

from bq_stream.constants import DEFAULT_API_URL, RECOMMENDED_BATCH_ROWS
from bq_stream.core.batch import MAX_ROWS_PER_REQUEST
from bq_stream.errors import ConfigError


@dataclass
class Config:
    """Configuration values derived from environment variables."""
    # Target
    project_id: str
    dataset_id: str
    table_id: str
    location: Optional[str]

    # Auth / HTTP
    sa_key_path: Optional[str]
    access_token: Optional[str]
    api_url: str
    req_timeout: float

    # Query
    query_timeout_ms: int

    # insertAll
    max_batch_rows: int
    skip_invalid_rows: bool
    ignore_unknown_values: bool

    # Teardown
    keep_resources: bool


def _require(name: str) -> str:
    value = os.getenv(name)
    if not value:
        raise ConfigError(f"{name} env var not defined")
    return value


def _flag(name: str, default: str = "0") -> bool:
    raw = os.getenv(name, default)
    try:
        return bool(int(raw))
    except ValueError:
        raise ConfigError(f"{name} must be 0 or 1, got {raw!r}") from None


def _number(name: str, default: str, kind: type = int):
    raw = os.getenv(name, default)
    try:
        return kind(raw)
    except ValueError:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from None


async def initialize_environment() -> Config:
    """Load environment variables and build a :class:`Config` instance.

    ``PROJECT_ID``, ``DATASET_ID`` and ``TABLE_ID`` are required; everything
    else has a default. A ``.env`` file in the working directory is honoured.
    """
    load_dotenv()

    max_batch_rows = _number("BQ_MAX_BATCH_ROWS", str(RECOMMENDED_BATCH_ROWS))
    if not 0 < max_batch_rows <= MAX_ROWS_PER_REQUEST:
        raise ConfigError(
            f"BQ_MAX_BATCH_ROWS must be in 1..{MAX_ROWS_PER_REQUEST}, got {max_batch_rows}")

    return Config(
        project_id=_require("PROJECT_ID"),
        dataset_id=_require("DATASET_ID"),
        table_id=_require("TABLE_ID"),
        location=os.getenv("BQ_LOCATION") or None,

        sa_key_path=os.getenv("GOOGLE_APPLICATION_CREDENTIALS") or None,
        access_token=os.getenv("BQ_ACCESS_TOKEN") or None,
        api_url=os.getenv("BQ_API_URL", DEFAULT_API_URL),
        req_timeout=_number("BQ_REQ_TIMEOUT", "30", float),

        query_timeout_ms=_number("BQ_QUERY_TIMEOUT_MS", "10000"),

        max_batch_rows=max_batch_rows,
        skip_invalid_rows=_flag("BQ_SKIP_INVALID_ROWS"),
        ignore_unknown_values=_flag("BQ_IGNORE_UNKNOWN_VALUES"),

        keep_resources=_flag("BQ_KEEP_RESOURCES"),
    )
