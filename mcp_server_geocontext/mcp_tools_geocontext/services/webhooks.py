from __future__ import annotations

import asyncio
import hashlib
import hmac
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Set, Tuple, Union

import requests

from ..core.schemas import DeliveryStatus, Webhook, WebhookDelivery, WebhookEvent, WebhookPayload
from ..core.settings import DEFAULT_USER_AGENT
from ..utils.ids import generate_id
from .concurrency import describe_error

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 3

# (url, body, headers) -> None; raises on failure
Sender = Callable[[str, bytes, Dict[str, str]], None]
Sleep = Callable[[float], Awaitable[Any]]
Clock = Callable[[], datetime]

_Job = List[Tuple[Webhook, WebhookDelivery]]


def sign_payload(body: bytes, secret: str) -> str:
    """HMAC-SHA256 hex digest of the exact request body."""
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class WebhookManager:
    """Webhook registry plus an out-of-band delivery worker.

    `trigger_event` only renders the payload and puts a job on an internal
    queue; a worker task picks jobs up and delivers to every subscribed
    webhook concurrently. Each delivery is tried up to `max_attempts` times,
    sleeping 2**attempt seconds between tries. Failures are logged and kept
    in the delivery history; they never reach the caller of `trigger_event`.
    """

    def __init__(
        self,
        sender: Optional[Sender] = None,
        timeout_s: float = 30.0,
        user_agent: str = DEFAULT_USER_AGENT,
        max_attempts: int = MAX_ATTEMPTS,
        sleep: Sleep = asyncio.sleep,
        clock: Clock = _utcnow,
    ) -> None:
        self.timeout_s = timeout_s
        self.user_agent = user_agent
        self.max_attempts = max_attempts
        self._sender = sender or self._post
        self._sleep = sleep
        self._clock = clock
        self._session: Optional[requests.Session] = None

        self._webhooks: Dict[str, Webhook] = {}
        self._deliveries: Dict[str, WebhookDelivery] = {}
        # Jobs triggered while no worker loop is running
        self._backlog: List[_Job] = []
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._queue: Optional["asyncio.Queue[_Job]"] = None
        self._worker: Optional[asyncio.Task] = None
        self._in_flight: Set[asyncio.Task] = set()
        logger.info("Webhook manager initialized")

    # ------------------------------------------------------------------
    # Registry
    # ------------------------------------------------------------------

    def register(
        self,
        url: str,
        events: Iterable[Union[WebhookEvent, str]],
        secret: Optional[str] = None,
    ) -> Webhook:
        unique_events = list(dict.fromkeys(WebhookEvent(e) for e in events))
        webhook = Webhook(id=generate_id("webhook"), url=url, events=unique_events, secret=secret or None)
        self._webhooks[webhook.id] = webhook
        logger.info("Webhook registered: %s url=%s events=%s", webhook.id, webhook.url, [e.value for e in unique_events])
        return webhook

    def unregister(self, webhook_id: str) -> bool:
        removed = self._webhooks.pop(webhook_id, None) is not None
        if removed:
            logger.info("Webhook unregistered: %s", webhook_id)
        return removed

    def get(self, webhook_id: str) -> Optional[Webhook]:
        return self._webhooks.get(webhook_id)

    def list(self) -> List[Webhook]:
        return list(self._webhooks.values())

    # ------------------------------------------------------------------
    # Triggering
    # ------------------------------------------------------------------

    def trigger_event(
        self,
        event: Union[WebhookEvent, str],
        data: Optional[Dict[str, Any]] = None,
        correlation_id: Optional[str] = None,
    ) -> None:
        """Queue `event` for every active subscriber and return immediately."""
        payload = WebhookPayload(event=WebhookEvent(event), timestamp=self._clock(), data=data or {}, correlation_id=correlation_id)
        subscribers = [w for w in self._webhooks.values() if w.active and payload.event in w.events]
        logger.info("Triggering event %s for %d webhooks", payload.event.value, len(subscribers))
        if not subscribers:
            return

        job: _Job = []
        for webhook in subscribers:
            delivery = WebhookDelivery(id=generate_id("delivery"), webhook_id=webhook.id, payload=payload)
            self._deliveries[delivery.id] = delivery
            job.append((webhook, delivery))

        try:
            asyncio.get_running_loop()
        except RuntimeError:
            self._backlog.append(job)
            logger.debug("No running event loop; %d deliveries wait for start()", len(job))
            return
        self.start()
        self._queue.put_nowait(job)

    # ------------------------------------------------------------------
    # Worker lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start the delivery worker on the running loop (idempotent).

        Queue and worker belong to one event loop; on a new loop they are
        rebuilt and any undelivered jobs move over.
        """
        loop = asyncio.get_running_loop()
        if self._loop is not loop:
            if self._queue is not None:
                while not self._queue.empty():
                    self._backlog.append(self._queue.get_nowait())
            self._loop = loop
            self._queue = asyncio.Queue()
            self._worker = None
            self._in_flight = set()
        if self._session is None:
            self._session = requests.Session()
        while self._backlog:
            self._queue.put_nowait(self._backlog.pop(0))
        if self._worker is None or self._worker.done():
            self._worker = loop.create_task(self._run_worker())

    async def join(self) -> None:
        """Wait until queued jobs and in-flight deliveries have finished."""
        self.start()
        await self._queue.join()
        while self._in_flight:
            await asyncio.gather(*list(self._in_flight))

    async def stop(self, drain: bool = True) -> None:
        if drain:
            await self.join()
        if self._worker is not None:
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
            self._worker = None
        for task in list(self._in_flight):
            task.cancel()
        if self._queue is not None:
            while not self._queue.empty():
                self._backlog.append(self._queue.get_nowait())
        self._loop = None
        self._queue = None
        if self._session is not None:
            self._session.close()
            self._session = None

    async def _run_worker(self) -> None:
        queue = self._queue
        while True:
            job = await queue.get()
            try:
                for webhook, delivery in job:
                    task = asyncio.create_task(self._deliver(webhook, delivery))
                    self._in_flight.add(task)
                    task.add_done_callback(self._in_flight.discard)
            finally:
                queue.task_done()

    # ------------------------------------------------------------------
    # Delivery
    # ------------------------------------------------------------------

    def _post(self, url: str, body: bytes, headers: Dict[str, str]) -> None:
        # Session is created by start(), before any delivery runs
        r = self._session.post(url, data=body, headers=headers, timeout=self.timeout_s)
        r.raise_for_status()

    def _headers(self, webhook: Webhook, delivery: WebhookDelivery, body: bytes) -> Dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "User-Agent": self.user_agent,
            "X-Webhook-Event": delivery.payload.event.value,
            "X-Webhook-Delivery": delivery.id,
        }
        if webhook.secret:
            headers["X-Webhook-Signature"] = sign_payload(body, webhook.secret)
        return headers

    async def _deliver(self, webhook: Webhook, delivery: WebhookDelivery) -> None:
        body = delivery.payload.model_dump_json().encode("utf-8")
        headers = self._headers(webhook, delivery, body)

        while delivery.attempts < self.max_attempts:
            delivery.attempts += 1
            attempted_at = self._clock()
            delivery.last_attempt = attempted_at
            delivery.attempt_times.append(attempted_at)

            try:
                await asyncio.to_thread(self._sender, webhook.url, body, headers)
            except Exception as exc:
                delivery.error = describe_error(exc)
                logger.error(
                    "Webhook delivery attempt %d failed: %s (webhook=%s): %s",
                    delivery.attempts,
                    delivery.id,
                    webhook.id,
                    delivery.error,
                )
                if delivery.attempts < self.max_attempts:
                    await self._sleep(2 ** delivery.attempts)
                continue

            delivery.status = DeliveryStatus.SUCCESS
            delivery.error = None
            webhook.last_triggered = attempted_at
            logger.info("Webhook delivered: %s (webhook=%s event=%s)", delivery.id, webhook.id, delivery.payload.event.value)
            return

        delivery.status = DeliveryStatus.FAILED
        logger.error("Webhook delivery failed after %d attempts: %s", self.max_attempts, delivery.id)

    # ------------------------------------------------------------------
    # History / stats
    # ------------------------------------------------------------------

    def get_deliveries(self, webhook_id: str, limit: int = 50) -> List[WebhookDelivery]:
        """Delivery history for one webhook, most recent attempt first."""
        oldest = datetime.min.replace(tzinfo=timezone.utc)
        history = [d for d in self._deliveries.values() if d.webhook_id == webhook_id]
        history.sort(key=lambda d: d.last_attempt or oldest, reverse=True)
        return history[: max(0, limit)]

    def stats(self) -> Dict[str, int]:
        deliveries = list(self._deliveries.values())
        return {
            "total_webhooks": len(self._webhooks),
            "active_webhooks": sum(1 for w in self._webhooks.values() if w.active),
            "total_deliveries": len(deliveries),
            "successful_deliveries": sum(1 for d in deliveries if d.status == DeliveryStatus.SUCCESS),
            "failed_deliveries": sum(1 for d in deliveries if d.status == DeliveryStatus.FAILED),
        }
