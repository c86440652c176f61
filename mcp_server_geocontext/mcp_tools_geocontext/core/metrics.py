from __future__ import annotations

import logging
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterator, Optional

logger = logging.getLogger(__name__)


@dataclass
class _ToolStats:
    calls: int = 0
    successful: int = 0
    failed: int = 0
    total_ms: float = 0.0
    min_ms: Optional[float] = None
    max_ms: float = 0.0
    last_called: Optional[float] = None


class ToolMetrics:
    """Per-tool call counters and latency, keyed by tool name."""

    def __init__(self, clock: Callable[[], float] = time.perf_counter, wall_clock: Callable[[], float] = time.time) -> None:
        self.clock = clock
        self.wall_clock = wall_clock
        self._tools: Dict[str, _ToolStats] = {}

    def record(self, tool: str, duration_ms: float, ok: bool) -> None:
        stats = self._tools.setdefault(tool, _ToolStats())
        stats.calls += 1
        if ok:
            stats.successful += 1
        else:
            stats.failed += 1
        stats.total_ms += duration_ms
        stats.min_ms = duration_ms if stats.min_ms is None else min(stats.min_ms, duration_ms)
        stats.max_ms = max(stats.max_ms, duration_ms)
        stats.last_called = self.wall_clock()
        logger.debug("Metrics recorded for %s: %.1fms ok=%s", tool, duration_ms, ok)

    @contextmanager
    def track(self, tool: str) -> Iterator[None]:
        """Time the block and count it as a failure if it raises."""
        started = self.clock()
        ok = False
        try:
            yield
            ok = True
        finally:
            self.record(tool, (self.clock() - started) * 1000.0, ok)

    def snapshot(self) -> Dict[str, Dict[str, Any]]:
        return {
            name: {
                "calls": s.calls,
                "successful": s.successful,
                "errors": s.failed,
                "avg_ms": round(s.total_ms / s.calls, 3),
                "min_ms": round(s.min_ms or 0.0, 3),
                "max_ms": round(s.max_ms, 3),
                "last_called": s.last_called,
            }
            for name, s in sorted(self._tools.items())
        }

    def summary(self) -> Dict[str, Any]:
        calls = sum(s.calls for s in self._tools.values())
        failed = sum(s.failed for s in self._tools.values())
        total_ms = sum(s.total_ms for s in self._tools.values())
        return {
            "total_calls": calls,
            "total_errors": failed,
            "avg_ms": round(total_ms / calls, 3) if calls else 0.0,
        }
