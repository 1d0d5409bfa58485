"""Table schema builders mirroring the BigQuery ``TableFieldSchema`` resource."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Literal, Optional, Sequence

FieldMode = Literal["NULLABLE", "REQUIRED", "REPEATED"]


@dataclass(frozen=True, slots=True)
class TableFieldSchema:
    """A single column definition; ``RECORD`` columns carry sub-fields."""

    name: str
    type: str
    mode: FieldMode = "NULLABLE"
    description: Optional[str] = None
    fields: tuple["TableFieldSchema", ...] = field(default_factory=tuple)

    # ------------------------------------------------------------------ #
    # Constructors                                                        #
    # ------------------------------------------------------------------ #
    @classmethod
    def integer(cls, name: str) -> "TableFieldSchema":
        return cls(name, "INTEGER")

    @classmethod
    def float(cls, name: str) -> "TableFieldSchema":
        return cls(name, "FLOAT")

    @classmethod
    def numeric(cls, name: str) -> "TableFieldSchema":
        return cls(name, "NUMERIC")

    @classmethod
    def bool(cls, name: str) -> "TableFieldSchema":
        return cls(name, "BOOLEAN")

    @classmethod
    def string(cls, name: str) -> "TableFieldSchema":
        return cls(name, "STRING")

    @classmethod
    def bytes(cls, name: str) -> "TableFieldSchema":
        return cls(name, "BYTES")

    @classmethod
    def date(cls, name: str) -> "TableFieldSchema":
        return cls(name, "DATE")

    @classmethod
    def datetime(cls, name: str) -> "TableFieldSchema":
        return cls(name, "DATETIME")

    @classmethod
    def time(cls, name: str) -> "TableFieldSchema":
        return cls(name, "TIME")

    @classmethod
    def timestamp(cls, name: str) -> "TableFieldSchema":
        return cls(name, "TIMESTAMP")

    @classmethod
    def json(cls, name: str) -> "TableFieldSchema":
        return cls(name, "JSON")

    @classmethod
    def record(cls, name: str, fields: Sequence["TableFieldSchema"]) -> "TableFieldSchema":
        _check_unique(fields, name)
        return cls(name, "RECORD", fields=tuple(fields))

    # ------------------------------------------------------------------ #
    # Modifiers                                                           #
    # ------------------------------------------------------------------ #
    def with_mode(self, mode: FieldMode) -> "TableFieldSchema":
        if mode not in ("NULLABLE", "REQUIRED", "REPEATED"):
            raise ValueError(f"invalid field mode: {mode}")
        return replace(self, mode=mode)

    def required(self) -> "TableFieldSchema":
        return self.with_mode("REQUIRED")

    def repeated(self) -> "TableFieldSchema":
        return self.with_mode("REPEATED")

    def with_description(self, description: str) -> "TableFieldSchema":
        return replace(self, description=description)

    def to_api(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"name": self.name, "type": self.type, "mode": self.mode}
        if self.description is not None:
            body["description"] = self.description
        if self.fields:
            body["fields"] = [f.to_api() for f in self.fields]
        return body


def _check_unique(fields: Sequence[TableFieldSchema], where: str) -> None:
    seen: set[str] = set()
    for f in fields:
        if f.name in seen:
            raise ValueError(f"duplicate field name {f.name!r} in {where}")
        seen.add(f.name)


@dataclass(frozen=True, slots=True)
class TableSchema:
    fields: List[TableFieldSchema]

    def __post_init__(self) -> None:
        _check_unique(self.fields, "table schema")

    def to_api(self) -> Dict[str, Any]:
        return {"fields": [f.to_api() for f in self.fields]}
