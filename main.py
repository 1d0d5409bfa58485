"""Entry point for invoking the BigQuery streaming demo via the CLI."""

from __future__ import annotations

from bq_stream.cli import run

if __name__ == "__main__":
    run()
