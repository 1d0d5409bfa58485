"""Shared fixtures: a ready-made Config and an in-memory BigQuery double."""
from __future__ import annotations

import httpx
import pytest

from bq_stream.config import Config

from tests.fakes import API_URL, FakeBigQuery


@pytest.fixture
def fake_bq() -> FakeBigQuery:
    return FakeBigQuery()


@pytest.fixture
def transport(fake_bq: FakeBigQuery) -> httpx.MockTransport:
    return httpx.MockTransport(fake_bq)


@pytest.fixture
def config() -> Config:
    return Config(
        project_id="proj",
        dataset_id="ds",
        table_id="tbl",
        location=None,
        sa_key_path=None,
        access_token="test-token",
        api_url=API_URL,
        req_timeout=5.0,
        query_timeout_ms=1000,
        max_batch_rows=500,
        skip_invalid_rows=False,
        ignore_unknown_values=False,
        keep_resources=False,
    )
