"""
Fire-and-forget webhook delivery pool.

Used for the hook sink and per-monitor webhooks. Nothing here is ever
surfaced to the producer: failures are logged and dropped.
"""

from __future__ import annotations

import asyncio
from collections import defaultdict
from typing import DefaultDict, Optional
from urllib.parse import urlparse

import httpx
from loguru import logger

from wabridge.bus.events import WebhookDelivery


DEFAULT_WORKERS = 4
DEFAULT_MAX_PENDING = 256
DEFAULT_PER_DESTINATION = 2
DEFAULT_TIMEOUT_S = 30.0


class WebhookDispatcher:
    """
    Bounded worker pool for outbound JSON POSTs.

    Architecture:
        producers -> submit() -> bounded queue -> workers -> httpx

    Guarantees:
        - submit() never blocks and never raises
        - overflow drops the OLDEST pending delivery
        - at most ``per_destination`` in-flight POSTs per host
        - no retries
    """

    def __init__(
        self,
        workers: int = DEFAULT_WORKERS,
        max_pending: int = DEFAULT_MAX_PENDING,
        per_destination: int = DEFAULT_PER_DESTINATION,
        timeout: float = DEFAULT_TIMEOUT_S,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.workers = workers
        self.per_destination = per_destination
        self.timeout = timeout

        self._queue: asyncio.Queue[WebhookDelivery] = asyncio.Queue(maxsize=max_pending)
        self._limits: DefaultDict[str, asyncio.Semaphore] = defaultdict(
            lambda: asyncio.Semaphore(self.per_destination)
        )
        self._client = client
        self._owns_client = client is None
        self._tasks: list[asyncio.Task] = []
        self._dropped = 0

    # ---------------------------------------------------------------------
    # Lifecycle
    # ---------------------------------------------------------------------

    async def start(self) -> None:
        if self._tasks:
            return
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        self._tasks = [
            asyncio.create_task(self._worker_loop(i), name=f"webhook-worker-{i}")
            for i in range(self.workers)
        ]
        logger.info("Webhook dispatcher started | workers={}", self.workers)

    async def stop(self) -> None:
        for task in self._tasks:
            task.cancel()
        for task in self._tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._tasks = []

        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

        logger.info("Webhook dispatcher stopped")

    async def join(self) -> None:
        """Wait until every submitted delivery has been attempted."""
        await self._queue.join()

    # ---------------------------------------------------------------------
    # Producer side
    # ---------------------------------------------------------------------

    def submit(self, delivery: WebhookDelivery) -> None:
        """Queue a delivery, evicting the oldest one when full."""
        try:
            self._queue.put_nowait(delivery)
            return
        except asyncio.QueueFull:
            pass

        try:
            dropped = self._queue.get_nowait()
            self._queue.task_done()
            self._dropped += 1
            logger.warning(
                "Webhook queue full, dropped oldest | label={} url={}",
                dropped.label,
                dropped.url,
            )
        except asyncio.QueueEmpty:
            pass

        self._queue.put_nowait(delivery)

    # ---------------------------------------------------------------------
    # Workers
    # ---------------------------------------------------------------------

    async def _worker_loop(self, index: int) -> None:
        while True:
            delivery = await self._queue.get()
            try:
                await self._deliver(delivery)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Webhook worker {} crashed on {}", index, delivery.label)
            finally:
                self._queue.task_done()

    async def _deliver(self, delivery: WebhookDelivery) -> None:
        assert self._client is not None

        host = urlparse(delivery.url).netloc or delivery.url
        async with self._limits[host]:
            try:
                response = await self._client.post(
                    delivery.url,
                    json=delivery.payload,
                    headers=delivery.headers,
                )
            except Exception as e:
                logger.error(
                    "Webhook delivery failed | label={} url={} err={}",
                    delivery.label,
                    delivery.url,
                    e,
                )
                return

        if response.status_code >= 400:
            logger.warning(
                "Webhook rejected | label={} url={} status={}",
                delivery.label,
                delivery.url,
                response.status_code,
            )
        else:
            logger.debug("Webhook delivered | label={} status={}", delivery.label, response.status_code)

    # ---------------------------------------------------------------------
    # Metrics
    # ---------------------------------------------------------------------

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    @property
    def dropped(self) -> int:
        return self._dropped
