"""Public package exports for the :mod:`bq_stream` library."""

from __future__ import annotations

from bq_stream.core.batch import RowBatch, RowEntry
from bq_stream.core.serialize import to_structured
from bq_stream.errors import BatchFullError, BatchFinalizedError, SerializationError

__all__ = [
    "RowBatch",
    "RowEntry",
    "to_structured",
    "SerializationError",
    "BatchFullError",
    "BatchFinalizedError",
    "pipeline",
    "config",
    "constants",
    "models",
    "schema",
    "errors",
    "logging_setup",
    "core",
    "telemetry",
    "clients",
]
