"""Bounded asyncio worker pools with caller-runs backpressure."""

import asyncio
import contextvars
from dataclasses import dataclass
from typing import Awaitable, Callable

from notifyhub.core.config import Settings
from notifyhub.core.logging import get_logger
from notifyhub.observability.metrics import EXECUTOR_CALLER_RUNS, EXECUTOR_QUEUE_DEPTH

logger = get_logger(__name__)

# Zero-argument coroutine factory
Job = Callable[[], Awaitable[None]]


class BoundedExecutor:
    """Worker pool over a bounded queue.

    Keeps ``min_workers`` tasks alive and grows up to ``max_workers`` while
    jobs are waiting. Surplus workers exit after ``keep_alive`` idle seconds.
    When the queue is full the submitter runs the job itself, so work is
    never dropped and the queue never grows past its capacity.
    """

    def __init__(
        self,
        name: str,
        min_workers: int,
        max_workers: int,
        queue_capacity: int,
        keep_alive: float = 30.0,
    ):
        """Initialize executor.

        Args:
            name: Pool name used in logs and metrics
            min_workers: Workers kept alive while running
            max_workers: Upper bound on concurrent workers
            queue_capacity: Maximum number of waiting jobs
            keep_alive: Idle seconds before a surplus worker exits
        """
        if min_workers < 1:
            raise ValueError("min_workers must be >= 1")
        if max_workers < min_workers:
            raise ValueError("max_workers must be >= min_workers")
        if queue_capacity < 1:
            raise ValueError("queue_capacity must be >= 1")

        self.name = name
        self.min_workers = min_workers
        self.max_workers = max_workers
        self.queue_capacity = queue_capacity
        self._keep_alive = keep_alive
        self._queue: asyncio.Queue[Job] | None = None
        self._workers: set[asyncio.Task] = set()
        self._idle = 0
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    @property
    def worker_count(self) -> int:
        return len(self._workers)

    async def start(self) -> None:
        """Start the minimum number of workers."""
        if self._running:
            return
        self._queue = asyncio.Queue(maxsize=self.queue_capacity)
        self._running = True
        for _ in range(self.min_workers):
            self._spawn()
        logger.info(
            "Executor started",
            pool=self.name,
            min_workers=self.min_workers,
            max_workers=self.max_workers,
            queue_capacity=self.queue_capacity,
        )

    async def submit(self, job: Job) -> None:
        """Hand a job to the pool.

        Returns as soon as the job is queued. If the queue is full, the job
        runs to completion in the caller before returning.

        Raises:
            RuntimeError: If the executor is not running
        """
        if not self._running or self._queue is None:
            raise RuntimeError(f"Executor '{self.name}' is not running")

        try:
            self._queue.put_nowait(job)
        except asyncio.QueueFull:
            EXECUTOR_CALLER_RUNS.labels(pool=self.name).inc()
            logger.warning("Executor saturated, running task in caller", pool=self.name)
            await self._run(job)
            return

        EXECUTOR_QUEUE_DEPTH.labels(pool=self.name).set(self._queue.qsize())
        if self._queue.qsize() > self._idle and len(self._workers) < self.max_workers:
            self._spawn()

    async def join(self) -> None:
        """Wait until every queued job has finished."""
        if self._queue is not None:
            await self._queue.join()

    async def shutdown(self, drain: bool = True) -> None:
        """Stop the pool.

        Args:
            drain: Finish queued jobs before stopping workers
        """
        if not self._running:
            return
        self._running = False
        if drain:
            await self.join()

        workers = list(self._workers)
        for worker in workers:
            worker.cancel()
        await asyncio.gather(*workers, return_exceptions=True)
        self._workers.clear()
        self._idle = 0
        logger.info("Executor stopped", pool=self.name)

    def _spawn(self) -> None:
        # A new worker counts as idle until it picks up a job
        self._idle += 1
        # Empty context: workers outlive the submitter's log bindings
        task = asyncio.create_task(
            self._worker(),
            name=f"{self.name}-{len(self._workers) + 1}",
            context=contextvars.Context(),
        )
        self._workers.add(task)
        task.add_done_callback(self._workers.discard)

    async def _worker(self) -> None:
        assert self._queue is not None
        try:
            while True:
                try:
                    if len(self._workers) > self.min_workers:
                        job = await asyncio.wait_for(self._queue.get(), timeout=self._keep_alive)
                    else:
                        job = await self._queue.get()
                except asyncio.TimeoutError:
                    if len(self._workers) > self.min_workers:
                        self._workers.discard(asyncio.current_task())
                        logger.debug("Surplus worker idle, exiting", pool=self.name)
                        return
                    continue

                self._idle -= 1
                EXECUTOR_QUEUE_DEPTH.labels(pool=self.name).set(self._queue.qsize())
                try:
                    await self._run(job)
                finally:
                    self._idle += 1
                    self._queue.task_done()
        finally:
            self._idle -= 1

    async def _run(self, job: Job) -> None:
        try:
            await job()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error("Executor task failed", pool=self.name, error=str(e), exc_info=True)


@dataclass
class ExecutorPair:
    """Publish and delivery pools, configured independently."""

    publish: BoundedExecutor
    delivery: BoundedExecutor

    @classmethod
    def from_settings(cls, settings: Settings) -> "ExecutorPair":
        return cls(
            publish=BoundedExecutor(
                "publish",
                min_workers=settings.publish_pool_min,
                max_workers=settings.publish_pool_max,
                queue_capacity=settings.publish_pool_queue,
                keep_alive=settings.pool_keep_alive_seconds,
            ),
            delivery=BoundedExecutor(
                "delivery",
                min_workers=settings.delivery_pool_min,
                max_workers=settings.delivery_pool_max,
                queue_capacity=settings.delivery_pool_queue,
                keep_alive=settings.pool_keep_alive_seconds,
            ),
        )

    async def start(self) -> None:
        await self.publish.start()
        await self.delivery.start()

    async def join(self) -> None:
        """Wait for delivery jobs and the publishes they trigger."""
        await self.delivery.join()
        await self.publish.join()

    async def shutdown(self) -> None:
        # Delivery first: its failures still need the publish pool
        await self.delivery.shutdown()
        await self.publish.shutdown()
