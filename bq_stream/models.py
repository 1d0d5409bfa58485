from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from bq_stream.errors import InsertAllError


@dataclass(slots=True)
class DatasetRef:
    project_id: str
    dataset_id: str
    location: Optional[str] = None


@dataclass(slots=True)
class TableRef:
    project_id: str
    dataset_id: str
    table_id: str

    @property
    def qualified(self) -> str:
        """``project.dataset.table`` as used in standard SQL."""
        return f"{self.project_id}.{self.dataset_id}.{self.table_id}"


@dataclass(slots=True)
class RowInsertError:
    """Errors reported by insertAll for the row at ``index`` of the batch."""

    index: int
    insert_id: Optional[str]
    errors: List[Dict[str, Any]] = field(default_factory=list)


@dataclass(slots=True)
class InsertAllResult:
    rows: int
    errors: List[RowInsertError] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors

    def raise_for_errors(self) -> None:
        if self.errors:
            raise InsertAllError(self.errors)


# ──────────────────────────────────────────────────────────────────────────────
# Demo rows streamed by the pipeline (two levels of nested records)
# ──────────────────────────────────────────────────────────────────────────────
@dataclass(slots=True)
class SecondRecordLevel:
    int_value: int
    string_value: str


@dataclass(slots=True)
class FirstRecordLevel:
    int_value: int
    string_value: str
    record_value: SecondRecordLevel


@dataclass(slots=True)
class DemoRow:
    int_value: int
    float_value: float
    bool_value: bool
    string_value: str
    record_value: FirstRecordLevel
