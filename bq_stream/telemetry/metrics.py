from __future__ import annotations

import threading
import math
from collections import Counter, defaultdict
from dataclasses import dataclass, field
from typing import Dict, List, Iterable, Tuple

from bq_stream.models import RowInsertError


def _percentile(sorted_values: List[float], p: float) -> float:
    if not sorted_values:
        return float("nan")
    k = (len(sorted_values) - 1) * (p / 100.0)
    f = math.floor(k)
    c = math.ceil(k)
    if f == c:
        return sorted_values[int(k)]
    d0 = sorted_values[f] * (c - k)
    d1 = sorted_values[c] * (k - f)
    return d0 + d1


def pct_summary(values: Iterable[float]) -> Dict[str, float]:
    vals = sorted(v for v in values if v is not None)
    if not vals:
        return {"count": 0, "min": float("nan"), "p50": float("nan"),
                "p95": float("nan"), "p99": float("nan"), "max": float("nan")}
    return {
        "count": len(vals),
        "min": vals[0],
        "p50": _percentile(vals, 50),
        "p95": _percentile(vals, 95),
        "p99": _percentile(vals, 99),
        "max": vals[-1],
    }


@dataclass
class Metrics:
    lock: threading.Lock = field(default_factory=threading.Lock)

    batches_sent: int = 0
    rows_sent: int = 0
    rows_rejected: int = 0

    # stage -> list of durations
    stage_durations: Dict[str, List[float]] = field(
        default_factory=lambda: defaultdict(list))

    # insertAll per-row rejections by reason
    insert_errors_by_reason: Counter[str] = field(default_factory=Counter)

    # exception classification
    errors_by_type: Counter[str] = field(default_factory=Counter)

    def observe_stage(self, stage: str, duration: float) -> None:
        with self.lock:
            self.stage_durations[stage].append(duration)

    def add_rows(self, n: int) -> None:
        with self.lock:
            self.batches_sent += 1
            self.rows_sent += n

    def record_insert_errors(self, errors: Iterable[RowInsertError]) -> None:
        with self.lock:
            for row_err in errors:
                self.rows_rejected += 1
                for detail in row_err.errors:
                    self.insert_errors_by_reason[detail.get("reason", "unknown")] += 1

    def record_error(self, exc: BaseException) -> None:
        with self.lock:
            self.errors_by_type[type(exc).__name__] += 1

    def summary(self) -> Tuple[str, Dict]:
        with self.lock:
            stage_stats = {
                stage: pct_summary(durations)
                for stage, durations in self.stage_durations.items()
            }
            res = {
                "batches_sent": self.batches_sent,
                "rows_sent": self.rows_sent,
                "rows_rejected": self.rows_rejected,
                "stage_stats": stage_stats,
                "insert_errors_by_reason": dict(self.insert_errors_by_reason),
                "errors_by_type": dict(self.errors_by_type),
            }

        lines = []
        lines.append("===== METRICS SUMMARY =====")
        lines.append(f"Rows       : sent={res['rows_sent']:,}  rejected={res['rows_rejected']:,}  "
                     f"batches={res['batches_sent']}")
        lines.append("")
        lines.append("Per-stage timings (seconds):")
        for stage, stats in stage_stats.items():
            lines.append(
                f"  {stage:20s} "
                f"count={stats['count']:6d}  "
                f"min={stats['min']:.4f}  p50={stats['p50']:.4f}  "
                f"p95={stats['p95']:.4f}  p99={stats['p99']:.4f}  max={stats['max']:.4f}"
            )
        if res["insert_errors_by_reason"]:
            lines.append("")
            lines.append("insertAll rejections by reason:")
            for k, v in sorted(res["insert_errors_by_reason"].items(), key=lambda kv: kv[1], reverse=True):
                lines.append(f"  {k}: {v}")
        if res["errors_by_type"]:
            lines.append("")
            lines.append("Errors by type:")
            for k, v in sorted(res["errors_by_type"].items(), key=lambda kv: kv[1], reverse=True):
                lines.append(f"  {k}: {v}")

        return "\n".join(lines), res
