from __future__ import annotations

# ──────────────────────────────────────────────────────────────────────────────
# BigQuery REST endpoints and auth
# ──────────────────────────────────────────────────────────────────────────────
DEFAULT_API_URL = "https://bigquery.googleapis.com/bigquery/v2"
BIGQUERY_SCOPE = "https://www.googleapis.com/auth/bigquery"

# Rows per insertAll call recommended by the streaming API docs
RECOMMENDED_BATCH_ROWS = 500
