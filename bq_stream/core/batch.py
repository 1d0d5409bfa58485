"""
Row batch builder for the BigQuery streaming-insert (``insertAll``) call.

Rows are serialized on append, so a batch only ever holds wire-ready
entries. A batch is consumed once: after :meth:`RowBatch.finalize` it
refuses further mutation, and :meth:`RowBatch.to_body` hands it off only once.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Tuple

import orjson

from bq_stream.core.serialize import serialize_row
from bq_stream.errors import BatchFinalizedError, BatchFullError, SerializationError

logger = logging.getLogger(__name__)

# Hard per-request row cap of tabledata.insertAll
MAX_ROWS_PER_REQUEST = 50_000


@dataclass(frozen=True, slots=True)
class RowEntry:
    """One serialized row plus its optional dedup id."""

    insert_id: Optional[str]
    json: Dict[str, Any]

    def to_api(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"json": self.json}
        if self.insert_id is not None:
            body["insertId"] = self.insert_id
        return body


class RowBatch:
    """Ordered, bounded accumulation of rows for a single insertAll request."""

    def __init__(
        self,
        *,
        max_rows: int = MAX_ROWS_PER_REQUEST,
        skip_invalid_rows: bool = False,
        ignore_unknown_values: bool = False,
        template_suffix: Optional[str] = None,
    ) -> None:
        if max_rows <= 0:
            raise ValueError("max_rows must be positive")
        self.max_rows = max_rows
        self.skip_invalid_rows = skip_invalid_rows
        self.ignore_unknown_values = ignore_unknown_values
        self.template_suffix = template_suffix
        self._entries: List[RowEntry] = []
        self._finalized = False
        self._sent = False

    # ------------------------------------------------------------------ #
    # Mutation                                                            #
    # ------------------------------------------------------------------ #
    def _check_open(self) -> None:
        if self._finalized:
            raise BatchFinalizedError()

    @staticmethod
    def _make_entry(row: Any, insert_id: Optional[str]) -> RowEntry:
        if insert_id is not None and not isinstance(insert_id, str):
            raise SerializationError(
                "", f"insert_id must be a string, got {type(insert_id).__name__}"
            )
        entry = RowEntry(insert_id=insert_id, json=serialize_row(row))
        try:
            orjson.dumps(entry.to_api())
        except orjson.JSONEncodeError as exc:
            raise SerializationError("", f"row cannot be encoded as JSON: {exc}") from None
        return entry

    def append(self, row: Any, insert_id: Optional[str] = None) -> None:
        """Serialize ``row`` and add it to the end of the batch.

        The batch is untouched when serialization fails or the batch is full.
        """
        self._check_open()
        if len(self._entries) >= self.max_rows:
            raise BatchFullError(self.max_rows)
        entry = self._make_entry(row, insert_id)
        self._entries.append(entry)

    def extend(self, rows: Iterable[Any]) -> None:
        """
        Append many rows at once, all-or-nothing.

        Each item is either a row or an ``(insert_id, row)`` pair whose first
        element is a string or ``None``.
        """
        self._check_open()
        pending: List[RowEntry] = []
        for item in rows:
            if isinstance(item, tuple) and len(item) == 2 and (item[0] is None or isinstance(item[0], str)) \
                    and not hasattr(item, "_asdict"):
                insert_id, row = item
            else:
                insert_id, row = None, item
            pending.append(self._make_entry(row, insert_id))
        if len(self._entries) + len(pending) > self.max_rows:
            raise BatchFullError(self.max_rows)
        self._entries.extend(pending)

    # ------------------------------------------------------------------ #
    # Hand-off                                                            #
    # ------------------------------------------------------------------ #
    @property
    def finalized(self) -> bool:
        return self._finalized

    def finalize(self) -> Tuple[RowEntry, ...]:
        """Return the accumulated entries in insertion order and close the batch."""
        self._check_open()
        self._finalized = True
        logger.debug("Finalized batch of %d rows", len(self._entries))
        return tuple(self._entries)

    @property
    def sent(self) -> bool:
        return self._sent

    def to_body(self) -> Dict[str, Any]:
        """Return the insertAll request body, finalizing the batch if needed.

        The body can be taken only once, so the same rows are never posted twice.
        """
        if self._sent:
            raise BatchFinalizedError("batch already sent")
        entries = tuple(self._entries) if self._finalized else self.finalize()
        self._sent = True
        body: Dict[str, Any] = {
            "kind": "bigquery#tableDataInsertAllRequest",
            "rows": [e.to_api() for e in entries],
        }
        if self.skip_invalid_rows:
            body["skipInvalidRows"] = True
        if self.ignore_unknown_values:
            body["ignoreUnknownValues"] = True
        if self.template_suffix:
            body["templateSuffix"] = self.template_suffix
        return body

    def insert_id_at(self, index: int) -> Optional[str]:
        """Return the insert id of the row at ``index`` (for error correlation)."""
        return self._entries[index].insert_id

    # ------------------------------------------------------------------ #
    # Misc                                                                #
    # ------------------------------------------------------------------ #
    def __len__(self) -> int:
        return len(self._entries)

    def is_empty(self) -> bool:
        return not self._entries

    def __repr__(self) -> str:
        state = "sent" if self._sent else "finalized" if self._finalized else "open"
        return f"<RowBatch rows={len(self._entries)} max={self.max_rows} {state}>"
