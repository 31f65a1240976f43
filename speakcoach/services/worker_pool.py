"""
Bounded in-process worker pool for recording analysis.

A fixed number of asyncio workers consume recording ids from a bounded queue:
- submit() waits for room in the queue (backpressure instead of unbounded tasks)
- stop() refuses new work, drains what is queued within a timeout, then
  cancels the workers
Handler errors are logged here; the processor has already moved the recording
to a terminal state before raising.
"""
import asyncio
import logging
from typing import Awaitable, Callable

from speakcoach.config import settings

logger = logging.getLogger(__name__)

Handler = Callable[[int], Awaitable[object]]


class WorkerPoolClosed(RuntimeError):
    """The pool is not accepting work (not started or shutting down)."""
    pass


class ProcessingWorkerPool:
    """Fixed-size asyncio worker pool fed by a bounded queue."""

    def __init__(self, size: int = 4, max_queue: int = 100):
        self.size = max(1, size)
        self.max_queue = max(1, max_queue)
        self._queue: asyncio.Queue[int] | None = None
        self._workers: list[asyncio.Task] = []
        self._handler: Handler | None = None
        self._accepting = False

    @property
    def running(self) -> bool:
        return self._accepting

    @property
    def pending(self) -> int:
        """Number of queued ids not yet picked by a worker."""
        return self._queue.qsize() if self._queue is not None else 0

    async def start(self, handler: Handler) -> None:
        """Start the workers. Must be called from the event loop that will run them."""
        if self._accepting:
            return
        self._handler = handler
        self._queue = asyncio.Queue(maxsize=self.max_queue)
        self._workers = [
            asyncio.create_task(self._worker(n), name=f"recording-worker-{n}")
            for n in range(self.size)
        ]
        self._accepting = True
        logger.info("Worker pool started (%d workers, queue size %d)", self.size, self.max_queue)

    async def submit(self, recording_id: int) -> None:
        """Queue a recording id, waiting while the queue is full."""
        if not self._accepting or self._queue is None:
            raise WorkerPoolClosed("Worker pool is not running")
        await self._queue.put(recording_id)
        logger.debug("Queued recording %s (%d pending)", recording_id, self._queue.qsize())

    async def stop(self, timeout: float = 30.0) -> None:
        """
        Graceful shutdown.

        Args:
            timeout: Seconds to wait for queued and in-flight work before cancelling
        """
        if self._queue is None:
            return
        self._accepting = False

        try:
            await asyncio.wait_for(self._queue.join(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(
                "Worker pool drain timed out after %.0fs, %d recording(s) left Pending",
                timeout, self._queue.qsize(),
            )

        for task in self._workers:
            task.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []
        self._queue = None
        logger.info("Worker pool stopped")

    async def _worker(self, n: int) -> None:
        assert self._queue is not None and self._handler is not None
        queue = self._queue
        while True:
            recording_id = await queue.get()
            try:
                await self._handler(recording_id)
            except Exception:
                logger.exception("Worker %d: processing of recording %s failed", n, recording_id)
            finally:
                queue.task_done()


# Singleton instance, started by the API lifespan
worker_pool = ProcessingWorkerPool(
    size=settings.worker_pool_size,
    max_queue=settings.worker_queue_size,
)
