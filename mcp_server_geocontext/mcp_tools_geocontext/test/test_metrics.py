from __future__ import annotations

import pytest

from mcp_tools_geocontext.core.metrics import ToolMetrics

from .fakes import FakeMonotonic


def test_track_counts_successes_failures_and_latency(monotonic: FakeMonotonic) -> None:
    metrics = ToolMetrics(clock=monotonic, wall_clock=lambda: 1_700_000_000.0)

    with metrics.track("generate_route"):
        monotonic.advance(0.2)
    with pytest.raises(RuntimeError):
        with metrics.track("generate_route"):
            monotonic.advance(0.4)
            raise RuntimeError("router down")

    stats = metrics.snapshot()["generate_route"]
    assert stats["calls"] == 2
    assert stats["successful"] == 1
    assert stats["errors"] == 1
    assert stats["min_ms"] == pytest.approx(200.0)
    assert stats["max_ms"] == pytest.approx(400.0)
    assert stats["avg_ms"] == pytest.approx(300.0)
    assert stats["last_called"] == 1_700_000_000.0


def test_summary_over_all_tools() -> None:
    metrics = ToolMetrics()
    assert metrics.summary() == {"total_calls": 0, "total_errors": 0, "avg_ms": 0.0}

    metrics.record("a", 10.0, ok=True)
    metrics.record("b", 30.0, ok=False)

    assert list(metrics.snapshot()) == ["a", "b"]
    assert metrics.summary() == {"total_calls": 2, "total_errors": 1, "avg_ms": 20.0}
