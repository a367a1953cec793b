"""
Job Store Service
SQLite-backed persistence for generation jobs.
"""

import asyncio
import json
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import aiosqlite
from pydantic import BaseModel

from ..config import get_settings
from ..models.job import GenerationJob, JobPage
from ..utils.exceptions import JobNotFoundError, StorageError
from ..utils.logger import get_logger

logger = get_logger()

_TOP_LEVEL_FIELDS = set(GenerationJob.model_fields)


class JobStore:
    """Durable job records keyed by id. Each update replaces whole blocks in one statement."""

    def __init__(self, db_path: str):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._initialized = False
        self._init_lock = asyncio.Lock()
        self._write_lock = asyncio.Lock()

    async def initialize(self):
        """Initialize database schema."""
        if self._initialized:
            return

        async with self._init_lock:
            if self._initialized:
                return

            async with aiosqlite.connect(self.db_path) as conn:
                await conn.execute("PRAGMA journal_mode=WAL")
                await conn.execute("PRAGMA synchronous=NORMAL")
                await conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS generations (
                        id TEXT PRIMARY KEY,
                        user_id TEXT NOT NULL,
                        payload TEXT NOT NULL,
                        created_at TEXT NOT NULL,
                        updated_at TEXT NOT NULL
                    )
                    """
                )
                await conn.execute(
                    "CREATE INDEX IF NOT EXISTS idx_generations_user "
                    "ON generations(user_id, created_at DESC, id DESC)"
                )
                await conn.commit()

            self._initialized = True
            logger.info(f"Job store initialized at {self.db_path}")

    @staticmethod
    def _to_json(data: Dict[str, Any]) -> str:
        return json.dumps(data, ensure_ascii=False)

    @staticmethod
    def _dump(value: Any) -> Any:
        if isinstance(value, BaseModel):
            return value.model_dump(mode="json")
        if isinstance(value, datetime):
            return value.isoformat()
        return value

    async def save(self, job: GenerationJob) -> GenerationJob:
        """Insert or fully replace a job record."""
        await self.initialize()
        job.updated_at = datetime.utcnow()
        payload = self._to_json(job.model_dump(mode="json"))

        async with self._write_lock:
            async with aiosqlite.connect(self.db_path) as conn:
                await conn.execute(
                    """
                    INSERT INTO generations (id, user_id, payload, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?)
                    ON CONFLICT(id) DO UPDATE SET
                        payload = excluded.payload,
                        updated_at = excluded.updated_at
                    """,
                    (job.id, job.user_id, payload, job.created_at.isoformat(), job.updated_at.isoformat()),
                )
                await conn.commit()
        return job

    async def get(self, job_id: str) -> Optional[GenerationJob]:
        await self.initialize()
        async with aiosqlite.connect(self.db_path) as conn:
            cursor = await conn.execute("SELECT payload FROM generations WHERE id = ?", (job_id,))
            row = await cursor.fetchone()
            await cursor.close()

        if row is None:
            return None
        return self._load(row[0])

    async def require(self, job_id: str) -> GenerationJob:
        job = await self.get(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    async def update(self, job_id: str, blocks: Dict[str, Any]) -> GenerationJob:
        """
        Replace the named top-level blocks of a job and bump updated_at.

        The read-merge-write runs inside one IMMEDIATE transaction so a
        half-merged record is never visible to readers.
        """
        unknown = set(blocks) - _TOP_LEVEL_FIELDS
        if unknown:
            raise StorageError(f"Unknown job fields: {sorted(unknown)}", job_id=job_id)
        if {"id", "user_id", "initial_params", "created_at"} & set(blocks):
            raise StorageError("Job identity and initial parameters are immutable", job_id=job_id)

        await self.initialize()
        async with self._write_lock:
            async with aiosqlite.connect(self.db_path) as conn:
                await conn.execute("BEGIN IMMEDIATE")
                try:
                    cursor = await conn.execute(
                        "SELECT payload FROM generations WHERE id = ?", (job_id,)
                    )
                    row = await cursor.fetchone()
                    await cursor.close()
                    if row is None:
                        raise JobNotFoundError(job_id)

                    data = json.loads(row[0])
                    for name, value in blocks.items():
                        data[name] = self._dump(value)
                    data["updated_at"] = datetime.utcnow().isoformat()

                    # Validate before writing so a bad block never lands
                    job = GenerationJob.model_validate(data)
                    await conn.execute(
                        "UPDATE generations SET payload = ?, updated_at = ? WHERE id = ?",
                        (self._to_json(job.model_dump(mode="json")), data["updated_at"], job_id),
                    )
                    await conn.commit()
                except BaseException:
                    await conn.rollback()
                    raise
        return job

    async def delete(self, job_id: str) -> bool:
        await self.initialize()
        async with self._write_lock:
            async with aiosqlite.connect(self.db_path) as conn:
                cursor = await conn.execute("DELETE FROM generations WHERE id = ?", (job_id,))
                deleted = cursor.rowcount > 0
                await conn.commit()
        return deleted

    async def list_by_user(
        self,
        user_id: str,
        limit: int = 20,
        cursor: Optional[str] = None
    ) -> JobPage:
        """Newest-first page of a user's jobs. The cursor is opaque to callers."""
        await self.initialize()
        limit = max(1, min(limit, 100))
        params: Tuple[Any, ...] = (user_id,)
        query = "SELECT payload, created_at, id FROM generations WHERE user_id = ?"

        if cursor:
            created_at, last_id = self._decode_cursor(cursor)
            query += " AND (created_at < ? OR (created_at = ? AND id < ?))"
            params += (created_at, created_at, last_id)

        query += " ORDER BY created_at DESC, id DESC LIMIT ?"
        params += (limit + 1,)

        async with aiosqlite.connect(self.db_path) as conn:
            rows_cursor = await conn.execute(query, params)
            rows = await rows_cursor.fetchall()
            await rows_cursor.close()

            count_cursor = await conn.execute(
                "SELECT COUNT(*) FROM generations WHERE user_id = ?", (user_id,)
            )
            (total,) = await count_cursor.fetchone()
            await count_cursor.close()

        has_more = len(rows) > limit
        rows = rows[:limit]
        items = []
        for payload, _, _ in rows:
            job = self._load(payload)
            if job is not None:
                items.append(job.summary())

        next_cursor = None
        if has_more and rows:
            _, created_at, last_id = rows[-1]
            next_cursor = f"{created_at}|{last_id}"

        return JobPage(items=items, next_cursor=next_cursor, has_more=has_more, total_count=total)

    async def list_incomplete_auto_jobs(self) -> List[GenerationJob]:
        """Jobs queued for a full run that have not produced a final video."""
        await self.initialize()
        async with aiosqlite.connect(self.db_path) as conn:
            cursor = await conn.execute("SELECT payload FROM generations ORDER BY created_at")
            rows = await cursor.fetchall()
            await cursor.close()

        jobs = []
        for (payload,) in rows:
            job = self._load(payload)
            if job and job.auto_advance and not job.is_complete and job.last_error is None:
                jobs.append(job)
        return jobs

    async def list_expired(self, max_age_days: int) -> List[GenerationJob]:
        await self.initialize()
        cutoff = (datetime.utcnow() - timedelta(days=max_age_days)).isoformat()
        async with aiosqlite.connect(self.db_path) as conn:
            cursor = await conn.execute(
                "SELECT payload FROM generations WHERE updated_at < ?", (cutoff,)
            )
            rows = await cursor.fetchall()
            await cursor.close()
        return [job for job in (self._load(payload) for (payload,) in rows) if job]

    async def is_healthy(self) -> bool:
        try:
            await self.initialize()
            async with aiosqlite.connect(self.db_path) as conn:
                cursor = await conn.execute("SELECT 1")
                await cursor.fetchone()
                await cursor.close()
            return True
        except (aiosqlite.Error, OSError) as exc:
            logger.error(f"Job store health check failed: {exc}")
            return False

    @staticmethod
    def _decode_cursor(cursor: str) -> Tuple[str, str]:
        created_at, sep, last_id = cursor.partition("|")
        if not sep or not created_at or not last_id:
            raise StorageError("Invalid pagination cursor", cursor=cursor)
        return created_at, last_id

    @staticmethod
    def _load(payload: str) -> Optional[GenerationJob]:
        try:
            return GenerationJob.model_validate(json.loads(payload))
        except ValueError as exc:
            logger.warning(f"Skipping invalid stored job payload: {exc}")
            return None


_job_store: Optional[JobStore] = None


def get_job_store() -> JobStore:
    """Return singleton job store."""
    global _job_store
    if _job_store is None:
        settings = get_settings()
        db_path = Path(settings.data_dir) / "promptreel.db"
        _job_store = JobStore(str(db_path))
    return _job_store
