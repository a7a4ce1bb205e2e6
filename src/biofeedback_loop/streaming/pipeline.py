"""Async observation pipeline feeding the synchronous biofeedback loop."""

from __future__ import annotations

import asyncio
import time
from typing import Awaitable, Callable

import structlog

from biofeedback_loop.loop.orchestrator import BiofeedbackLoop
from biofeedback_loop.models import SensorObservation, TickResult

logger = structlog.get_logger(__name__)

TickConsumer = Callable[[TickResult], Awaitable[None]]


class ObservationPipeline:
    """In-process async pipeline that buffers sensor observations, runs each
    through the loop, and forwards the tick result to registered consumers
    (e.g. the session scheduler applying tempo commands).

    Producers (sensor collectors) and consumers are decoupled through an
    :class:`asyncio.Queue`; the loop itself is called synchronously, one
    observation at a time, in arrival order.
    """

    def __init__(self, loop: BiofeedbackLoop, maxsize: int = 1_000, stats_interval: float = 60.0) -> None:
        self._loop = loop
        self._queue: asyncio.Queue[SensorObservation] = asyncio.Queue(maxsize=maxsize)
        self._consumers: list[TickConsumer] = []
        self._running = False
        self._stats_interval = stats_interval
        self.processed_total = 0

    # ── Configuration ─────────────────────────────────────────

    def add_consumer(self, fn: TickConsumer) -> None:
        """Register an async callback that receives every tick result."""
        self._consumers.append(fn)

    # ── Producer side ─────────────────────────────────────────

    async def publish(self, observation: SensorObservation) -> None:
        await self._queue.put(observation)

    async def publish_batch(self, observations: list[SensorObservation]) -> None:
        for obs in observations:
            await self._queue.put(obs)

    # ── Consumer loop ─────────────────────────────────────────

    async def start(self) -> None:
        """Run the consumer loop until :meth:`stop` (run as a background task)."""
        self._running = True
        logger.info("observation_pipeline.started", consumers=len(self._consumers))
        last_stats = time.monotonic()

        while self._running:
            try:
                observation = await asyncio.wait_for(self._queue.get(), timeout=0.5)
            except asyncio.TimeoutError:
                continue

            try:
                result = self._loop.ingest(observation)
                for consumer in self._consumers:
                    try:
                        await consumer(result)
                    except Exception as exc:
                        logger.error(
                            "observation_pipeline.consumer_error",
                            consumer=getattr(consumer, "__qualname__", repr(consumer)),
                            error=str(exc),
                        )
                self.processed_total += 1
            finally:
                self._queue.task_done()

            now = time.monotonic()
            if now - last_stats >= self._stats_interval:
                logger.info(
                    "observation_pipeline.stats",
                    processed_total=self.processed_total,
                    queue_pending=self._queue.qsize(),
                )
                last_stats = now

    async def stop(self) -> None:
        self._running = False
        logger.info("observation_pipeline.stopped", processed_total=self.processed_total)

    async def drain(self) -> None:
        """Wait until every published observation has been processed."""
        await self._queue.join()

    @property
    def pending(self) -> int:
        return self._queue.qsize()
