from __future__ import annotations

from .serialize import to_structured, serialize_row
from .batch import RowBatch, RowEntry, MAX_ROWS_PER_REQUEST

__all__ = [
    "to_structured",
    "serialize_row",
    "RowBatch",
    "RowEntry",
    "MAX_ROWS_PER_REQUEST",
]
