"""Exception hierarchy shared by the builder, the transport and the CLI."""

from __future__ import annotations

from typing import Any, Dict, List, Optional


class BQStreamError(Exception):
    """Base class for every error raised by :mod:`bq_stream`."""


class ConfigError(BQStreamError):
    """A required environment variable is missing or malformed."""


class SerializationError(BQStreamError, ValueError):
    """A row value cannot be converted into the structured representation."""

    def __init__(self, path: str, message: str) -> None:
        self.path = path
        self.message = message
        where = path or "<row>"
        super().__init__(f"{where}: {message}")


class BatchError(BQStreamError):
    pass


class BatchFullError(BatchError):
    """The batch already holds its maximum number of rows."""

    def __init__(self, max_rows: int) -> None:
        self.max_rows = max_rows
        super().__init__(f"batch is full ({max_rows} rows)")


class BatchFinalizedError(BatchError):
    """The batch was already handed off and cannot be mutated or reused."""

    def __init__(self, message: str = "batch already finalized") -> None:
        super().__init__(message)


class BigQueryError(BQStreamError):
    """An error reported by the BigQuery REST API."""

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        reason: Optional[str] = None,
    ) -> None:
        self.message = message
        self.status_code = status_code
        self.reason = reason
        prefix = f"[{status_code}] " if status_code is not None else ""
        suffix = f" ({reason})" if reason else ""
        super().__init__(f"{prefix}{message}{suffix}")

    @classmethod
    def from_payload(cls, status_code: int, payload: Any) -> "BigQueryError":
        """Build an error from a Google API error envelope.

        The envelope looks like ``{"error": {"code", "message", "errors":
        [{"reason", "message", ...}]}}``; anything else falls back to a
        generic message.
        """
        message = f"HTTP {status_code}"
        reason: Optional[str] = None
        if isinstance(payload, dict) and isinstance(payload.get("error"), dict):
            err = payload["error"]
            message = str(err.get("message") or message)
            details = err.get("errors") or []
            if details and isinstance(details[0], dict):
                reason = details[0].get("reason")
            reason = reason or err.get("status")
        return cls(message, status_code=status_code, reason=reason)


class InsertAllError(BigQueryError):
    """One or more rows of an insertAll call were rejected."""

    def __init__(self, errors: List[Any]) -> None:
        self.errors = errors
        reasons: Dict[str, int] = {}
        for row_err in errors:
            for detail in getattr(row_err, "errors", []):
                key = detail.get("reason", "unknown")
                reasons[key] = reasons.get(key, 0) + 1
        summary = ", ".join(f"{k}={v}" for k, v in sorted(reasons.items()))
        super().__init__(
            f"{len(errors)} row(s) rejected by insertAll",
            reason=summary or None,
        )


class QueryIncompleteError(BigQueryError):
    """The query job did not finish inside the server-side timeout."""

    def __init__(self, job_id: Optional[str]) -> None:
        self.job_id = job_id
        super().__init__(f"query job {job_id} did not complete in time")


__all__ = [
    "BQStreamError",
    "ConfigError",
    "SerializationError",
    "BatchError",
    "BatchFullError",
    "BatchFinalizedError",
    "BigQueryError",
    "InsertAllError",
    "QueryIncompleteError",
]
