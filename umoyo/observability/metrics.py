"""
Prometheus Metrics for Umoyo

Tracks:
- queries_total: Counter of total queries processed
- queries_by_strategy: Counter per strategy that produced the answer
- queries_fallback: Counter of queries answered by a fallback strategy
- queries_unanswered: Counter of queries that ended in the safe refusal
- query_latency_seconds: Histogram of query response times
"""

import logging
import threading

logger = logging.getLogger(__name__)

STRATEGIES = ("managed", "custom", "hybrid", "none")
LATENCY_BUCKETS_MS = (500, 1000, 2000, 5000, 10000)


class QueryMetrics:
    """Thread-safe in-process query counters."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._by_strategy: dict[str, int] = {s: 0 for s in STRATEGIES}
        self._totals: dict[str, int] = {}
        self._latencies: list[float] = []
        self.reset()

    def record_query(
        self,
        latency_ms: float,
        strategy: str,
        fallback_used: bool = False,
        answered: bool = True,
    ) -> None:
        """Record metrics for a processed query."""
        with self._lock:
            self._totals["queries_total"] += 1
            self._by_strategy[strategy] = self._by_strategy.get(strategy, 0) + 1
            if fallback_used:
                self._totals["queries_fallback"] += 1
            if not answered:
                self._totals["queries_unanswered"] += 1
            self._latencies.append(latency_ms)

    def snapshot(self) -> dict:
        with self._lock:
            return {
                **self._totals,
                "by_strategy": dict(self._by_strategy),
                "latencies": len(self._latencies),
            }

    def get_metrics_text(self) -> str:
        """Generate Prometheus-compatible metrics text."""
        with self._lock:
            sorted_latencies = sorted(self._latencies) if self._latencies else [0]
            p50 = _percentile(sorted_latencies, 50)
            p95 = _percentile(sorted_latencies, 95)
            p99 = _percentile(sorted_latencies, 99)

            lines = [
                "# HELP queries_total Total number of queries processed",
                "# TYPE queries_total counter",
                f'queries_total {self._totals["queries_total"]}',
                "",
                "# HELP queries_by_strategy Queries answered per retrieval strategy",
                "# TYPE queries_by_strategy counter",
            ]
            for strategy, count in sorted(self._by_strategy.items()):
                lines.append(f'queries_by_strategy{{strategy="{strategy}"}} {count}')
            lines += [
                "",
                "# HELP queries_fallback Queries answered by a fallback strategy",
                "# TYPE queries_fallback counter",
                f'queries_fallback {self._totals["queries_fallback"]}',
                "",
                "# HELP queries_unanswered Queries that ended in the safe refusal",
                "# TYPE queries_unanswered counter",
                f'queries_unanswered {self._totals["queries_unanswered"]}',
                "",
                "# HELP query_latency_seconds Query response time histogram",
                "# TYPE query_latency_seconds histogram",
            ]
            for bucket in LATENCY_BUCKETS_MS:
                lines.append(
                    f'query_latency_seconds{{le="{bucket / 1000:.1f}"}} '
                    f"{_count_below(sorted_latencies, bucket)}"
                )
            lines += [
                f"query_latency_seconds_p50 {p50 / 1000:.4f}",
                f"query_latency_seconds_p95 {p95 / 1000:.4f}",
                f"query_latency_seconds_p99 {p99 / 1000:.4f}",
            ]

            return "\n".join(lines) + "\n"

    def reset(self) -> None:
        """Reset all metrics to zero."""
        with self._lock:
            self._totals = {
                "queries_total": 0,
                "queries_fallback": 0,
                "queries_unanswered": 0,
            }
            self._by_strategy = {s: 0 for s in STRATEGIES}
            self._latencies.clear()


def _percentile(sorted_data: list[float], percentile: int) -> float:
    """Compute the given percentile from sorted data."""
    if not sorted_data:
        return 0.0
    idx = int(len(sorted_data) * percentile / 100)
    idx = min(idx, len(sorted_data) - 1)
    return sorted_data[idx]


def _count_below(sorted_data: list[float], threshold_ms: float) -> int:
    """Count values at or below threshold in sorted data."""
    count = 0
    for v in sorted_data:
        if v <= threshold_ms:
            count += 1
        else:
            break
    return count
