"""
Settings Router
Service configuration status, languages, health and host resources
"""

import os
from typing import Dict, List

from fastapi import APIRouter
from pydantic import BaseModel

from ..config import get_settings
from ..languages import supported_languages
from ..services.job_store import get_job_store
from ..services.run_queue import get_run_queue
from ..utils.ffmpeg import get_ffmpeg_runner
from ..utils.logger import get_logger

router = APIRouter(prefix="/api/settings", tags=["settings"])
logger = get_logger()


class ServiceStatus(BaseModel):
    """Status of an external service"""
    name: str
    configured: bool
    status: str


class SettingsResponse(BaseModel):
    max_segment_duration: float
    clip_batch_size: int
    image_search_provider: str
    music_volume: float
    loop_music: bool
    retention_days: int
    services: List[ServiceStatus]


def _service(name: str, configured: bool, missing: str = "API key required") -> ServiceStatus:
    return ServiceStatus(name=name, configured=configured, status="Ready" if configured else missing)


@router.get("/", response_model=SettingsResponse)
async def get_current_settings():
    """Pipeline tuning values and which providers are configured"""
    settings = get_settings()
    google_ready = bool(settings.google_api_key and settings.google_search_engine_id)

    services = [
        _service("Gemini AI", bool(settings.gemini_api_key)),
        _service("ElevenLabs", bool(settings.elevenlabs_api_key)),
        _service("Pexels", bool(settings.pexels_api_key)),
        _service("Google Image Search", google_ready, "API key and engine id required"),
        _service("Jamendo", bool(settings.jamendo_client_id), "Client id required (music disabled)"),
        ServiceStatus(
            name="AWS S3",
            configured=settings.s3_enabled,
            status="Ready" if settings.s3_enabled else "Not configured (local storage)",
        ),
        ServiceStatus(
            name="API Security",
            configured=bool(settings.api_key),
            status="API key protected" if settings.api_key else "API key disabled",
        ),
    ]

    return SettingsResponse(
        max_segment_duration=settings.max_segment_duration,
        clip_batch_size=settings.clip_batch_size,
        image_search_provider=settings.image_search_provider,
        music_volume=settings.music_volume,
        loop_music=settings.loop_music,
        retention_days=settings.retention_days,
        services=services,
    )


@router.get("/languages")
async def get_supported_languages() -> Dict[str, str]:
    """Narration locales and their display names"""
    return supported_languages()


@router.get("/health")
async def health_check():
    store_ok = await get_job_store().is_healthy()
    return {
        "status": "healthy" if store_ok else "degraded",
        "version": get_app_version(),
        "app": "PromptReel",
        "job_store": store_ok,
    }


def get_git_revision() -> str:
    commit_sha = os.getenv("GIT_COMMIT_SHA")
    if commit_sha:
        return commit_sha[:7]
    return "dev"


def get_app_version() -> str:
    return f"{get_settings().app_version}-{get_git_revision()}"


@router.get("/system-status")
async def get_system_status():
    """FFmpeg availability, disk, memory and run queue"""
    import psutil

    settings = get_settings()
    disk = psutil.disk_usage(os.path.abspath(settings.temp_dir) if os.path.isdir(settings.temp_dir) else "/")
    memory = psutil.virtual_memory()
    ffmpeg_available = get_ffmpeg_runner().is_available()

    return {
        "ffmpeg": {
            "available": ffmpeg_available,
            "status": "Ready" if ffmpeg_available else "Not installed",
        },
        "disk": {
            "total_gb": round(disk.total / (1024**3), 1),
            "free_gb": round(disk.free / (1024**3), 1),
            "used_percent": disk.percent,
        },
        "memory": {
            "total_gb": round(memory.total / (1024**3), 1),
            "available_gb": round(memory.available / (1024**3), 1),
            "used_percent": memory.percent,
        },
        "run_queue": get_run_queue().stats(),
    }
