import threading

import pytest

from umoyo.observability.metrics import QueryMetrics


@pytest.fixture
def metrics():
    return QueryMetrics()


@pytest.mark.unit
def test_counters_start_at_zero(metrics):
    snap = metrics.snapshot()
    assert snap["queries_total"] == 0
    assert snap["queries_fallback"] == 0
    assert snap["queries_unanswered"] == 0
    assert snap["by_strategy"] == {"managed": 0, "custom": 0, "hybrid": 0, "none": 0}


@pytest.mark.unit
def test_record_query(metrics):
    metrics.record_query(120.0, "managed")
    metrics.record_query(900.0, "custom", fallback_used=True)
    metrics.record_query(30000.0, "hybrid", fallback_used=True, answered=False)

    snap = metrics.snapshot()
    assert snap["queries_total"] == 3
    assert snap["queries_fallback"] == 2
    assert snap["queries_unanswered"] == 1
    assert snap["by_strategy"]["custom"] == 1
    assert snap["latencies"] == 3


@pytest.mark.unit
def test_prometheus_text(metrics):
    metrics.record_query(400.0, "managed")
    metrics.record_query(1500.0, "managed")

    text = metrics.get_metrics_text()

    assert "# TYPE queries_total counter" in text
    assert "queries_total 2" in text
    assert 'queries_by_strategy{strategy="managed"} 2' in text
    assert 'query_latency_seconds{le="0.5"} 1' in text
    assert 'query_latency_seconds{le="2.0"} 2' in text
    assert "query_latency_seconds_p50 1.5000" in text


@pytest.mark.unit
def test_reset(metrics):
    metrics.record_query(100.0, "hybrid")
    metrics.reset()
    assert metrics.snapshot()["queries_total"] == 0
    assert "query_latency_seconds_p99 0.0000" in metrics.get_metrics_text()


@pytest.mark.unit
def test_concurrent_recording(metrics):
    def record():
        for _ in range(250):
            metrics.record_query(10.0, "custom")

    threads = [threading.Thread(target=record) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert metrics.snapshot()["queries_total"] == 1000
