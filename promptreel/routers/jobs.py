"""
Jobs Router
Generation job lifecycle, standalone stage runs and queued full runs.
"""

from typing import List, Optional

from fastapi import APIRouter, Header, HTTPException, Query, status
from pydantic import BaseModel, Field

from ..config import get_settings
from ..models.job import ClipTiming, GenerationJob, JobCreate, JobPage, Stage
from ..services.job_store import get_job_store
from ..services.object_store import get_object_store
from ..services.pipeline import get_pipeline
from ..services.retention import delete_generation
from ..services.run_queue import get_run_queue
from ..utils.exceptions import JobNotFoundError, PreconditionError
from ..utils.logger import get_logger

router = APIRouter(prefix="/api/jobs", tags=["jobs"])
logger = get_logger()

DEFAULT_USER = "anonymous"


class ScriptRequest(BaseModel):
    """Optional hand-written script and extra context for generation"""
    script: Optional[str] = Field(None, description="Use this text instead of generating one")
    memories: List[str] = Field(default_factory=list, description="Extra context lines for the writer")


class AudioRequest(BaseModel):
    script: Optional[str] = Field(None, description="Narrate this text instead of the job script")


class TimingsRequest(BaseModel):
    clip_timings: Optional[List[ClipTiming]] = None


class RunResponse(BaseModel):
    job_id: str
    queued: bool
    status: str


class VideoLink(BaseModel):
    url: str
    expires_in: int


async def _owned_job(job_id: str, user_id: str) -> GenerationJob:
    """Load a job, hiding other users' jobs behind the same 404"""
    job = await get_job_store().get(job_id)
    if job is None or job.user_id != user_id:
        raise JobNotFoundError(job_id)
    return job


async def process_generation(job_id: str):
    """Queue handler: walk every missing stage of one job."""
    await get_pipeline().advance(job_id)


def configure_run_queue():
    settings = get_settings()
    get_run_queue().configure(
        handler=process_generation,
        load_job=get_job_store().get,
        worker_count=settings.job_worker_concurrency,
        max_pending=settings.max_pending_jobs,
    )


async def resume_auto_jobs() -> int:
    """Re-queue full runs that a restart interrupted; stages already stored are skipped."""
    jobs = await get_job_store().list_incomplete_auto_jobs()
    queue = get_run_queue()
    resumed = 0
    for job in jobs:
        if await queue.enqueue(job.id):
            resumed += 1
        else:
            logger.warning(f"Run queue full, job {job.id} will resume on a later restart")
    if resumed:
        logger.info(f"Resumed {resumed} interrupted generation runs")
    return resumed


# ============================================================================
# Job CRUD
# ============================================================================

@router.post("/", response_model=GenerationJob, status_code=status.HTTP_201_CREATED)
async def create_job(request: JobCreate, x_user_id: str = Header(DEFAULT_USER)):
    """Create a generation job and optionally queue a full run."""
    queue = get_run_queue()
    if request.auto_run and not queue.can_accept():
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Run queue is full. Try again in a few minutes.",
        )

    store = get_job_store()
    job = GenerationJob(
        user_id=x_user_id,
        initial_params=request.to_initial_params(),
        auto_advance=request.auto_run,
    )
    await store.save(job)

    if request.auto_run:
        try:
            queued = await queue.enqueue(job.id)
        except RuntimeError as exc:
            await store.delete(job.id)
            raise HTTPException(503, f"Run queue unavailable: {exc}") from exc
        if not queued:
            await store.delete(job.id)
            raise HTTPException(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                detail="Run queue is full. Try again later.",
            )

    logger.info(f"Job created: {job.id} (auto_run={request.auto_run})")
    return job


@router.get("/", response_model=JobPage)
async def list_jobs(
    limit: int = Query(20, ge=1, le=100),
    cursor: Optional[str] = None,
    x_user_id: str = Header(DEFAULT_USER),
):
    """Newest-first page of the caller's jobs."""
    return await get_job_store().list_by_user(x_user_id, limit=limit, cursor=cursor)


@router.get("/{job_id}", response_model=GenerationJob)
async def get_job(job_id: str, x_user_id: str = Header(DEFAULT_USER)):
    return await _owned_job(job_id, x_user_id)


@router.delete("/{job_id}")
async def delete_job(job_id: str, x_user_id: str = Header(DEFAULT_USER)):
    """Delete a job and every stored object under its prefix."""
    job = await _owned_job(job_id, x_user_id)
    if get_run_queue().is_tracked(job_id):
        raise HTTPException(409, "Job has a queued or running generation")
    removed = await delete_generation(job, get_job_store(), get_object_store())
    return {"status": "deleted", "objects_removed": removed}


# ============================================================================
# Stage runs
# ============================================================================

@router.post("/{job_id}/script", response_model=GenerationJob)
async def run_script_stage(job_id: str, request: ScriptRequest, x_user_id: str = Header(DEFAULT_USER)):
    await _owned_job(job_id, x_user_id)
    return await get_pipeline().generate_script(job_id, user_script=request.script, memories=request.memories)


@router.post("/{job_id}/audio", response_model=GenerationJob)
async def run_audio_stage(job_id: str, request: AudioRequest, x_user_id: str = Header(DEFAULT_USER)):
    await _owned_job(job_id, x_user_id)
    return await get_pipeline().generate_audio(job_id, edited_script=request.script)


@router.post("/{job_id}/keywords", response_model=GenerationJob)
async def run_keywords_stage(job_id: str, request: TimingsRequest, x_user_id: str = Header(DEFAULT_USER)):
    await _owned_job(job_id, x_user_id)
    return await get_pipeline().extract_keywords(job_id, clip_timings=request.clip_timings)


@router.post("/{job_id}/clips", response_model=GenerationJob)
async def run_clips_stage(job_id: str, request: TimingsRequest, x_user_id: str = Header(DEFAULT_USER)):
    await _owned_job(job_id, x_user_id)
    return await get_pipeline().process_clips(job_id, clip_timings=request.clip_timings)


@router.post("/{job_id}/concatenate", response_model=GenerationJob)
async def run_concatenate_stage(job_id: str, x_user_id: str = Header(DEFAULT_USER)):
    await _owned_job(job_id, x_user_id)
    return await get_pipeline().concatenate(job_id)


@router.post("/{job_id}/subtitles", response_model=GenerationJob)
async def run_subtitles_stage(job_id: str, x_user_id: str = Header(DEFAULT_USER)):
    await _owned_job(job_id, x_user_id)
    return await get_pipeline().apply_subtitles(job_id)


@router.post("/{job_id}/run", response_model=RunResponse, status_code=status.HTTP_202_ACCEPTED)
async def run_full_pipeline(job_id: str, x_user_id: str = Header(DEFAULT_USER)):
    """Queue every missing stage of a job."""
    job = await _owned_job(job_id, x_user_id)
    if job.is_complete:
        return RunResponse(job_id=job_id, queued=False, status=job.status.value)

    if not job.auto_advance:
        job = await get_job_store().update(job_id, {"auto_advance": True})

    try:
        queued = await get_run_queue().enqueue(job_id)
    except RuntimeError as exc:
        raise HTTPException(503, f"Run queue unavailable: {exc}") from exc
    if not queued:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Run queue is full. Try again later.",
        )
    return RunResponse(job_id=job_id, queued=True, status=job.status.value)


@router.get("/{job_id}/video", response_model=VideoLink)
async def get_video_link(job_id: str, x_user_id: str = Header(DEFAULT_USER)):
    """Time-limited link to the captioned video."""
    job = await _owned_job(job_id, x_user_id)
    if job.final_video is None:
        raise PreconditionError(Stage.FINAL_VIDEO.value, "final video")

    expires_in = get_settings().presigned_url_expiry
    url = await get_object_store().presign(job.final_video.video_url, expires_in)
    return VideoLink(url=url, expires_in=expires_in)
