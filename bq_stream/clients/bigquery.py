"""Async client for the subset of the BigQuery v2 REST API used for streaming."""

from __future__ import annotations

import asyncio
import logging
import os
from time import perf_counter
from typing import Any, Dict, List, Optional

import google.auth
import httpx
import orjson
from google.auth.transport.requests import Request
from google.oauth2 import service_account

from bq_stream.constants import BIGQUERY_SCOPE, DEFAULT_API_URL
from bq_stream.core.batch import RowBatch
from bq_stream.errors import BigQueryError, QueryIncompleteError, SerializationError
from bq_stream.models import DatasetRef, InsertAllResult, RowInsertError, TableRef
from bq_stream.schema import TableSchema

logger = logging.getLogger(__name__)


def fetch_access_token(sa_key_path: Optional[str] = None) -> str:
    """Return an OAuth2 access token for the BigQuery scope.

    Uses the service-account key at ``sa_key_path`` when given, otherwise
    Application Default Credentials. Blocking; the token is not refreshed.
    """
    if sa_key_path:
        credentials = service_account.Credentials.from_service_account_file(
            sa_key_path, scopes=[BIGQUERY_SCOPE]
        )
    else:
        credentials, _ = google.auth.default(scopes=[BIGQUERY_SCOPE])
    credentials.refresh(Request())
    if not credentials.token:
        raise RuntimeError("No access token returned by credentials")
    return credentials.token


class ResultSet:
    """Forward-only cursor over the rows of a ``jobs.query`` response."""

    def __init__(self, response: Dict[str, Any]) -> None:
        fields = (response.get("schema") or {}).get("fields") or []
        self.column_names: List[str] = [f["name"] for f in fields]
        self._index = {name: i for i, name in enumerate(self.column_names)}
        self._rows: List[Dict[str, Any]] = response.get("rows") or []
        self.total_rows = int(response.get("totalRows", len(self._rows)))
        self.job_id: Optional[str] = (response.get("jobReference") or {}).get("jobId")
        self._cursor = -1

    def __len__(self) -> int:
        return len(self._rows)

    def next_row(self) -> bool:
        """Advance to the next row; return ``False`` once rows are exhausted."""
        if self._cursor + 1 >= len(self._rows):
            self._cursor = len(self._rows)
            return False
        self._cursor += 1
        return True

    def get_by_name(self, name: str) -> Any:
        """Return the raw cell of column ``name`` in the current row."""
        if name not in self._index:
            raise KeyError(f"Unknown column: {name}")
        if not 0 <= self._cursor < len(self._rows):
            raise RuntimeError("No current row; call next_row() first")
        return self._rows[self._cursor]["f"][self._index[name]].get("v")

    def get_int_by_name(self, name: str) -> Optional[int]:
        v = self.get_by_name(name)
        return None if v is None else int(v)

    def get_float_by_name(self, name: str) -> Optional[float]:
        v = self.get_by_name(name)
        return None if v is None else float(v)

    def get_bool_by_name(self, name: str) -> Optional[bool]:
        v = self.get_by_name(name)
        if v is None or isinstance(v, bool):
            return v
        return str(v).lower() == "true"

    def get_str_by_name(self, name: str) -> Optional[str]:
        v = self.get_by_name(name)
        return None if v is None else str(v)


class BQAsyncClient:
    """Minimal async wrapper around the BigQuery v2 REST API."""

    def __init__(
        self,
        api_url: str = os.getenv("BQ_API_URL", DEFAULT_API_URL),
        token: Optional[str] = None,
        sa_key_path: Optional[str] = os.getenv("GOOGLE_APPLICATION_CREDENTIALS"),
        request_timeout: float = 30.0,
        max_connections: int = 10,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Create a client for the BigQuery REST API.

        Parameters
        ----------
        api_url:
            Base URL of the BigQuery v2 API.
        token:
            Optional bearer token; skips credential loading when given.
        sa_key_path:
            Service-account JSON key used when no token is given. Falls back
            to Application Default Credentials when empty.
        request_timeout:
            Timeout in seconds applied to every request.
        max_connections:
            Maximum number of concurrent HTTP connections.
        transport:
            Optional httpx transport, e.g. :class:`httpx.MockTransport`.
        """
        self.api_url = api_url.rstrip("/")
        self.token = token
        self.sa_key_path = sa_key_path
        self._timeout = httpx.Timeout(request_timeout)
        self._limits = httpx.Limits(
            max_connections=max_connections, max_keepalive_connections=max_connections
        )
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> "BQAsyncClient":
        """Create the HTTP client and attach the bearer token."""
        await self._ensure_client()
        if not self.token:
            self.token = await asyncio.to_thread(fetch_access_token, self.sa_key_path)
        if self._client:
            self._client.headers.update({"Authorization": f"Bearer {self.token}"})
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        """Close the HTTP client when leaving the context manager."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def _ensure_client(self) -> None:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self._timeout, limits=self._limits, transport=self._transport
            )

    def _require_client(self) -> httpx.AsyncClient:
        """Return the initialized HTTP client or raise ``RuntimeError``."""
        if self._client is None:
            raise RuntimeError(
                "Client not initialized; use 'async with BQAsyncClient()'")
        return self._client

    async def _request(
        self,
        method: str,
        path: str,
        *,
        body: Any = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Any:
        """Send a request and return the decoded JSON body (``None`` if empty).

        Non-2xx responses raise :class:`BigQueryError` built from the Google
        error envelope.
        """
        client = self._require_client()
        headers = {}
        content = None
        if body is not None:
            try:
                content = orjson.dumps(body)
            except orjson.JSONEncodeError as exc:
                raise SerializationError("", f"request body cannot be encoded: {exc}") from exc
            headers["Content-Type"] = "application/json"
        start = perf_counter()
        resp = await client.request(
            method, f"{self.api_url}{path}", content=content, params=params, headers=headers
        )
        logger.debug(
            "%s %s -> %d in %.3fs", method, path, resp.status_code, perf_counter() - start
        )

        payload: Any = None
        if resp.content:
            try:
                payload = orjson.loads(resp.content)
            except orjson.JSONDecodeError:
                payload = None
        if resp.is_error:
            raise BigQueryError.from_payload(resp.status_code, payload)
        return payload

    # ------------------------------------------------------------------ #
    # Datasets                                                            #
    # ------------------------------------------------------------------ #
    async def create_dataset(
        self, project_id: str, dataset_id: str, location: Optional[str] = None
    ) -> DatasetRef:
        body: Dict[str, Any] = {
            "datasetReference": {"projectId": project_id, "datasetId": dataset_id}
        }
        if location:
            body["location"] = location
        data = await self._request("POST", f"/projects/{project_id}/datasets", body=body)
        ref = (data or {}).get("datasetReference", {})
        created = DatasetRef(
            project_id=ref.get("projectId", project_id),
            dataset_id=ref.get("datasetId", dataset_id),
            location=(data or {}).get("location", location),
        )
        logger.info("Dataset '%s.%s' created", created.project_id, created.dataset_id)
        return created

    async def delete_dataset(
        self, project_id: str, dataset_id: str, delete_contents: bool = False
    ) -> None:
        params = {"deleteContents": "true"} if delete_contents else None
        await self._request(
            "DELETE", f"/projects/{project_id}/datasets/{dataset_id}", params=params
        )
        logger.info("Dataset '%s.%s' deleted", project_id, dataset_id)

    # ------------------------------------------------------------------ #
    # Tables                                                              #
    # ------------------------------------------------------------------ #
    async def create_table(
        self, project_id: str, dataset_id: str, table_id: str, schema: TableSchema
    ) -> TableRef:
        body = {
            "tableReference": {
                "projectId": project_id,
                "datasetId": dataset_id,
                "tableId": table_id,
            },
            "schema": schema.to_api(),
        }
        data = await self._request(
            "POST", f"/projects/{project_id}/datasets/{dataset_id}/tables", body=body
        )
        ref = (data or {}).get("tableReference", {})
        created = TableRef(
            project_id=ref.get("projectId", project_id),
            dataset_id=ref.get("datasetId", dataset_id),
            table_id=ref.get("tableId", table_id),
        )
        logger.info("Table '%s' created", created.qualified)
        return created

    async def delete_table(self, project_id: str, dataset_id: str, table_id: str) -> None:
        await self._request(
            "DELETE", f"/projects/{project_id}/datasets/{dataset_id}/tables/{table_id}"
        )
        logger.info("Table '%s.%s.%s' deleted", project_id, dataset_id, table_id)

    # ------------------------------------------------------------------ #
    # Streaming insert                                                    #
    # ------------------------------------------------------------------ #
    async def insert_all(
        self, project_id: str, dataset_id: str, table_id: str, batch: RowBatch
    ) -> InsertAllResult:
        """Stream ``batch`` into the table and return per-row errors as reported.

        The batch is finalized by this call. An empty batch is finalized but
        not sent.
        """
        body = batch.to_body()
        n_rows = len(body["rows"])
        if not n_rows:
            logger.debug("Skipping insertAll for empty batch")
            return InsertAllResult(rows=0)

        data = await self._request(
            "POST",
            f"/projects/{project_id}/datasets/{dataset_id}/tables/{table_id}/insertAll",
            body=body,
        )
        errors: List[RowInsertError] = []
        for item in (data or {}).get("insertErrors") or []:
            index = int(item.get("index", -1))
            insert_id = batch.insert_id_at(index) if 0 <= index < n_rows else None
            errors.append(
                RowInsertError(index=index, insert_id=insert_id, errors=item.get("errors") or [])
            )
        if errors:
            logger.warning(
                "insertAll into %s.%s.%s rejected %d of %d rows",
                project_id, dataset_id, table_id, len(errors), n_rows,
            )
        else:
            logger.info("Inserted %d rows into %s.%s.%s", n_rows, project_id, dataset_id, table_id)
        return InsertAllResult(rows=n_rows, errors=errors)

    # ------------------------------------------------------------------ #
    # Queries                                                             #
    # ------------------------------------------------------------------ #
    async def query(
        self,
        project_id: str,
        sql: str,
        timeout_ms: int = 10_000,
        use_legacy_sql: bool = False,
    ) -> ResultSet:
        """Run ``sql`` through ``jobs.query`` and return its first page of rows.

        Raises :class:`QueryIncompleteError` when the job is still running
        after ``timeout_ms``.
        """
        body = {
            "query": sql,
            "useLegacySql": use_legacy_sql,
            "timeoutMs": timeout_ms,
        }
        data = await self._request("POST", f"/projects/{project_id}/queries", body=body) or {}
        if not data.get("jobComplete", False):
            raise QueryIncompleteError((data.get("jobReference") or {}).get("jobId"))
        return ResultSet(data)
