from __future__ import annotations

from .bigquery import BQAsyncClient, ResultSet, fetch_access_token

__all__ = ["BQAsyncClient", "ResultSet", "fetch_access_token"]
