from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, List, Optional, Sequence

from ..core.errors import ConfigurationError
from ..core.schemas import BatchItemResult

logger = logging.getLogger(__name__)

STOPPED_MESSAGE = "Batch processing stopped due to previous error"

Task = Callable[[], Awaitable[Any]]


@dataclass
class RunReport:
    results: List[BatchItemResult]
    successful: int
    failed: int
    duration_ms: float


def describe_error(exc: BaseException) -> str:
    return str(exc) or exc.__class__.__name__


class ConcurrencyController:
    """Runs independent async tasks with a bounded number in flight.

    - Results come back in submission order, whatever the completion order.
    - A failing task is recorded, never raised, so siblings keep running.
    - With `fail_fast`, the first failure stops tasks that have not started
      yet; they are recorded as failed with STOPPED_MESSAGE. Tasks already
      in flight are not cancelled.
    """

    def __init__(self, default_concurrency: int = 10) -> None:
        self.default_concurrency = self._check_limit(default_concurrency)

    @staticmethod
    def _check_limit(limit: int) -> int:
        if not isinstance(limit, int) or isinstance(limit, bool) or limit <= 0:
            raise ConfigurationError(f"concurrency limit must be a positive int, got {limit!r}")
        return limit

    async def run(
        self,
        tasks: Sequence[Task],
        concurrency: Optional[int] = None,
        fail_fast: bool = False,
        label: str = "batch",
    ) -> RunReport:
        limit = self._check_limit(self.default_concurrency if concurrency is None else concurrency)
        started = time.perf_counter()
        semaphore = asyncio.Semaphore(limit)
        stop = False

        async def _run_one(index: int, task: Task) -> BatchItemResult:
            nonlocal stop
            async with semaphore:
                if stop:
                    return BatchItemResult(index=index, success=False, error=STOPPED_MESSAGE)
                try:
                    value = await task()
                except Exception as exc:
                    logger.error("%s item %d failed: %s", label, index, describe_error(exc))
                    if fail_fast:
                        stop = True
                    return BatchItemResult(index=index, success=False, error=describe_error(exc))
                return BatchItemResult(index=index, success=True, data=value)

        results = list(await asyncio.gather(*(_run_one(i, t) for i, t in enumerate(tasks))))

        successful = sum(1 for r in results if r.success)
        report = RunReport(
            results=results,
            successful=successful,
            failed=len(results) - successful,
            duration_ms=(time.perf_counter() - started) * 1000.0,
        )
        logger.info(
            "%s finished: total=%d successful=%d failed=%d duration=%.0fms",
            label,
            len(results),
            report.successful,
            report.failed,
            report.duration_ms,
        )
        return report
