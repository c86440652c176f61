from __future__ import annotations

import logging
from typing import Sequence

from ..core.schemas import (
    BatchContextRequest,
    BatchEnrichRequest,
    BatchOptions,
    BatchResponse,
    BatchRouteRequest,
    WebhookEvent,
)
from ..utils.ids import generate_id
from .concurrency import ConcurrencyController, Task
from .context import LocationService
from .routing import RoutingService
from .webhooks import WebhookManager

logger = logging.getLogger(__name__)

ROUTE_CONCURRENCY_CAP = 3
LOOKUP_CONCURRENCY_CAP = 5


class BatchService:
    """Homogeneous batches of route/enrichment/context requests."""

    def __init__(
        self,
        controller: ConcurrencyController,
        routing: RoutingService,
        locations: LocationService,
        webhooks: WebhookManager,
        max_concurrent_requests: int = 10,
    ) -> None:
        self.controller = controller
        self.routing = routing
        self.locations = locations
        self.webhooks = webhooks
        self.max_concurrent_requests = max_concurrent_requests

    async def _run(self, kind: str, tasks: Sequence[Task], options: BatchOptions, cap: int) -> BatchResponse:
        batch_id = generate_id("batch")
        concurrency = options.max_concurrency or min(self.max_concurrent_requests, cap)
        logger.info(
            "Processing %s batch %s with %d items (concurrency=%d, fail_fast=%s)",
            kind,
            batch_id,
            len(tasks),
            concurrency,
            options.fail_fast,
        )

        report = await self.controller.run(tasks, concurrency=concurrency, fail_fast=options.fail_fast, label=f"{kind} batch")
        response = BatchResponse(
            total_requests=len(tasks),
            successful=report.successful,
            failed=report.failed,
            results=report.results,
            duration_ms=report.duration_ms,
        )

        all_failed = response.total_requests > 0 and response.successful == 0
        self.webhooks.trigger_event(
            WebhookEvent.BATCH_FAILED if all_failed else WebhookEvent.BATCH_COMPLETED,
            {
                "batch_id": batch_id,
                "kind": kind,
                "total_requests": response.total_requests,
                "successful": response.successful,
                "failed": response.failed,
                "duration_ms": response.duration_ms,
            },
            correlation_id=batch_id,
        )
        return response

    async def generate_route_batch(self, request: BatchRouteRequest) -> BatchResponse:
        tasks = [lambda r=r: self.routing.generate_route(r) for r in request.requests]
        return await self._run("route", tasks, request.options, ROUTE_CONCURRENCY_CAP)

    async def enrich_location_batch(self, request: BatchEnrichRequest) -> BatchResponse:
        tasks = [lambda r=r: self.locations.enrich_location(r) for r in request.locations]
        return await self._run("enrichment", tasks, request.options, LOOKUP_CONCURRENCY_CAP)

    async def nearby_context_batch(self, request: BatchContextRequest) -> BatchResponse:
        tasks = [lambda q=q: self.locations.get_nearby_context(q) for q in request.queries]
        return await self._run("context", tasks, request.options, LOOKUP_CONCURRENCY_CAP)
