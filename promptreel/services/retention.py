"""
Retention Service
Periodically deletes old generations together with their stored media
"""

import asyncio
from typing import Optional

from ..config import Settings, get_settings
from ..models.job import GenerationJob
from ..utils.exceptions import StorageError
from ..utils.logger import get_logger
from .job_store import JobStore, get_job_store
from .object_store import get_object_store

logger = get_logger()


async def delete_generation(job: GenerationJob, store: JobStore, object_store) -> int:
    """Remove a job's objects under <user>/<job>/ and then its record"""
    removed = await object_store.delete_prefix(f"{job.user_id}/{job.id}/")
    await store.delete(job.id)
    logger.info(f"Deleted job {job.id} ({removed} stored objects)")
    return removed


class RetentionSweeper:
    """Background loop that expires jobs older than retention_days"""

    def __init__(
        self,
        store: Optional[JobStore] = None,
        object_store=None,
        settings: Optional[Settings] = None
    ):
        self.settings = settings or get_settings()
        self.store = store or get_job_store()
        self.object_store = object_store or get_object_store()
        self._running = False
        self._task: Optional[asyncio.Task] = None

    async def sweep(self) -> int:
        """Delete every expired job once; returns how many were removed"""
        if self.settings.retention_days <= 0:
            return 0
        expired = await self.store.list_expired(self.settings.retention_days)
        if not expired:
            return 0

        logger.info(f"Retention: {len(expired)} jobs older than {self.settings.retention_days} days")
        removed = 0
        for job in expired:
            try:
                await delete_generation(job, self.store, self.object_store)
                removed += 1
            except StorageError as exc:
                logger.error(f"Retention: could not delete job {job.id}: {exc.message}")
        return removed

    async def run(self):
        self._running = True
        interval = self.settings.retention_check_interval
        logger.info(f"Retention sweeper started (interval: {interval}s)")

        while self._running:
            try:
                await self.sweep()
            except Exception as e:
                logger.exception(f"Retention sweep error: {e}")
            await asyncio.sleep(interval)

    def start_background(self):
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run())

    def stop(self):
        self._running = False
        if self._task:
            self._task.cancel()
        logger.info("Retention sweeper stopped")
