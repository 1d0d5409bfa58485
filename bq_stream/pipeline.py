"""Top level orchestration of the streaming-insert demo run."""

from __future__ import annotations

import logging
from time import perf_counter
from typing import Iterable, Iterator, List, Optional, Tuple

import httpx

from bq_stream.clients.bigquery import BQAsyncClient
from bq_stream.config import Config, initialize_environment
from bq_stream.core.batch import RowBatch
from bq_stream.errors import BQStreamError
from bq_stream.models import (
    DemoRow,
    FirstRecordLevel,
    InsertAllResult,
    SecondRecordLevel,
    TableRef,
)
from bq_stream.schema import TableFieldSchema, TableSchema
from bq_stream.telemetry.metrics import Metrics

logger = logging.getLogger(__name__)

_ORDINALS = ("first", "second", "third", "fourth")


def demo_schema() -> TableSchema:
    """Schema with scalar columns and two levels of nested records."""
    return TableSchema([
        TableFieldSchema.integer("int_value"),
        TableFieldSchema.float("float_value"),
        TableFieldSchema.bool("bool_value"),
        TableFieldSchema.string("string_value"),
        TableFieldSchema.record(
            "record_value",
            [
                TableFieldSchema.integer("int_value"),
                TableFieldSchema.string("string_value"),
                TableFieldSchema.record(
                    "record_value",
                    [
                        TableFieldSchema.integer("int_value"),
                        TableFieldSchema.string("string_value"),
                    ],
                ),
            ],
        ),
    ])


def demo_rows() -> List[DemoRow]:
    rows: List[DemoRow] = []
    for i, name in enumerate(_ORDINALS):
        rows.append(
            DemoRow(
                int_value=i + 1,
                float_value=float(i + 1),
                bool_value=i % 2 == 1,
                string_value=name,
                record_value=FirstRecordLevel(
                    int_value=10 + i,
                    string_value=f"sub_level_1.{i + 1}",
                    record_value=SecondRecordLevel(int_value=20 + i, string_value="leaf"),
                ),
            )
        )
    return rows


def build_batches(rows: Iterable[object], config: Config) -> Iterator[RowBatch]:
    """Split ``rows`` into insertAll batches of at most ``max_batch_rows``."""
    def _new() -> RowBatch:
        return RowBatch(
            max_rows=config.max_batch_rows,
            skip_invalid_rows=config.skip_invalid_rows,
            ignore_unknown_values=config.ignore_unknown_values,
        )

    batch = _new()
    for row in rows:
        if len(batch) >= config.max_batch_rows:
            yield batch
            batch = _new()
        batch.append(row)
    if not batch.is_empty():
        yield batch


async def stream_rows(
    client: BQAsyncClient,
    table: TableRef,
    rows: Iterable[object],
    config: Config,
    metrics: Metrics,
) -> List[InsertAllResult]:
    """Send ``rows`` batch by batch; rejected rows are recorded, not raised."""
    results: List[InsertAllResult] = []
    for batch in build_batches(rows, config):
        start = perf_counter()
        result = await client.insert_all(
            table.project_id, table.dataset_id, table.table_id, batch)
        metrics.observe_stage("insert_all", perf_counter() - start)
        metrics.add_rows(result.rows)
        metrics.record_insert_errors(result.errors)
        results.append(result)
    return results


async def run_pipeline(
    config: Config | None = None,
    *,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> Tuple[Optional[int], Metrics]:
    """Execute the demo run and return the queried row count and metrics.

    Parameters
    ----------
    config:
        Optional :class:`Config` instance. If ``None``, environment variables
        are loaded via :func:`initialize_environment`.
    transport:
        Optional httpx transport handed to the client (used by tests).
    """
    if config is None:
        config = await initialize_environment()

    metrics = Metrics()
    row_count: Optional[int] = None
    failed = False

    async with BQAsyncClient(
        api_url=config.api_url,
        token=config.access_token,
        sa_key_path=config.sa_key_path,
        request_timeout=config.req_timeout,
        transport=transport,
    ) as client:
        start = perf_counter()
        await client.create_dataset(config.project_id, config.dataset_id, config.location)
        metrics.observe_stage("create_dataset", perf_counter() - start)

        try:
            start = perf_counter()
            table = await client.create_table(
                config.project_id, config.dataset_id, config.table_id, demo_schema())
            metrics.observe_stage("create_table", perf_counter() - start)

            results = await stream_rows(client, table, demo_rows(), config, metrics)
            for result in results:
                result.raise_for_errors()

            start = perf_counter()
            rs = await client.query(
                config.project_id,
                f"SELECT COUNT(*) AS c FROM `{table.qualified}`",
                timeout_ms=config.query_timeout_ms,
            )
            metrics.observe_stage("query", perf_counter() - start)
            while rs.next_row():
                row_count = rs.get_int_by_name("c")
                logger.info("Number of rows inserted: %s", row_count)
        except BaseException as exc:
            failed = True
            if isinstance(exc, BQStreamError):
                metrics.record_error(exc)
            raise
        finally:
            if config.keep_resources:
                logger.info("Keeping dataset %s.%s", config.project_id, config.dataset_id)
            else:
                try:
                    await _teardown(client, config, metrics)
                except Exception as exc:
                    metrics.record_error(exc)
                    logger.error("Teardown failed: %s", exc)
                    # an in-flight error stays the one reported
                    if not failed:
                        raise

    txt, _ = metrics.summary()
    logger.info("\n%s", txt)
    return row_count, metrics


async def _teardown(client: BQAsyncClient, config: Config, metrics: Metrics) -> None:
    start = perf_counter()
    try:
        await client.delete_table(config.project_id, config.dataset_id, config.table_id)
    except BQStreamError as exc:
        # table creation may have failed; the dataset delete below drops it anyway
        metrics.record_error(exc)
        logger.warning("Table delete failed: %s", exc)
    await client.delete_dataset(config.project_id, config.dataset_id, delete_contents=True)
    metrics.observe_stage("teardown", perf_counter() - start)
