"""
Run Queue Service
Bounded queue of full pipeline runs, drained by a fixed pool of workers.
"""

import asyncio
from typing import Awaitable, Callable, List, Optional, Set

from ..models.job import GenerationJob
from ..utils.logger import get_logger

logger = get_logger()

RunHandler = Callable[[str], Awaitable[object]]
JobLoader = Callable[[str], Awaitable[Optional[GenerationJob]]]


class RunQueue:
    """
    Pending generation ids processed by `worker_count` concurrent workers.

    A queued id is re-read just before it runs: jobs deleted by the retention
    sweep or finished through standalone stage calls in the meantime are
    dropped without calling the handler.
    """

    def __init__(self):
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=10)
        self._workers: List[asyncio.Task] = []
        self._handler: Optional[RunHandler] = None
        self._load_job: Optional[JobLoader] = None
        self._running = False
        self._worker_count = 1
        self._max_pending = 10
        self._pending: Set[str] = set()
        self._active: Set[str] = set()
        self._skipped = 0

    def configure(self, handler: RunHandler, load_job: JobLoader, worker_count: int, max_pending: int):
        """Set the run handler, job loader and capacity; ignored once started."""
        if self._running:
            return

        self._handler = handler
        self._load_job = load_job
        self._worker_count = max(1, worker_count)
        self._max_pending = max(1, max_pending)
        self._queue = asyncio.Queue(maxsize=self._max_pending)

    async def start(self):
        if self._running:
            return
        if self._handler is None or self._load_job is None:
            raise RuntimeError("RunQueue handler is not configured")

        self._running = True
        self._workers = [
            asyncio.create_task(self._worker(number + 1))
            for number in range(self._worker_count)
        ]
        logger.info(f"Run queue started (workers={self._worker_count}, max_pending={self._max_pending})")

    async def stop(self):
        """Let in-flight runs finish, then stop the workers."""
        if not self._running:
            return

        self._running = False
        for _ in self._workers:
            await self._queue.put(None)

        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers.clear()
        self._pending.clear()
        self._active.clear()
        logger.info("Run queue stopped")

    async def enqueue(self, job_id: str) -> bool:
        """
        Queue a full run for a job.

        A job already pending or running is not queued twice. Returns False
        when the queue is at capacity.
        """
        if not self._running:
            raise RuntimeError("Run queue is not running")

        if self.is_tracked(job_id):
            return True
        if self._queue.full():
            return False

        self._pending.add(job_id)
        await self._queue.put(job_id)
        return True

    def can_accept(self) -> bool:
        return not self._queue.full()

    def is_tracked(self, job_id: str) -> bool:
        return job_id in self._pending or job_id in self._active

    def stats(self) -> dict:
        return {
            "pending": self._queue.qsize(),
            "active": len(self._active),
            "skipped": self._skipped,
            "max_pending": self._max_pending,
            "workers": self._worker_count,
            "running": self._running,
        }

    async def _should_run(self, job_id: str) -> bool:
        job = await self._load_job(job_id)  # type: ignore[misc]
        if job is None:
            logger.info(f"Job {job_id} was deleted while queued, skipping run")
            return False
        if job.is_complete:
            logger.info(f"Job {job_id} already has a final video, skipping run")
            return False
        return True

    async def _worker(self, number: int):
        while True:
            job_id = await self._queue.get()
            if job_id is None:
                self._queue.task_done()
                return

            self._pending.discard(job_id)
            self._active.add(job_id)
            try:
                if await self._should_run(job_id):
                    await self._handler(job_id)  # type: ignore[misc]
                else:
                    self._skipped += 1
            except Exception as exc:
                # Stage failures are already stored on the job as last_error
                logger.error(f"Worker {number}: run for job {job_id} stopped: {exc}")
            finally:
                self._active.discard(job_id)
                self._queue.task_done()


_run_queue: Optional[RunQueue] = None


def get_run_queue() -> RunQueue:
    """Return the shared run queue"""
    global _run_queue
    if _run_queue is None:
        _run_queue = RunQueue()
    return _run_queue
