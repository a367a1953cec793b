"""
PromptReel - Prompt to Narrated Video
Main FastAPI Application Entry Point
"""

from pathlib import Path
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import get_settings
from .utils.logger import setup_logger
from .utils.exceptions import JobNotFoundError, PreconditionError, PromptReelError
from .routers import jobs_router, settings_router, audit_router
from .routers.jobs import configure_run_queue, resume_auto_jobs
from .services.job_store import get_job_store
from .services.run_queue import get_run_queue
from .services.retention import RetentionSweeper


settings = get_settings()
logger = setup_logger(level=settings.log_level, log_file=settings.log_file)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler"""
    settings = get_settings()

    Path(settings.output_dir).mkdir(parents=True, exist_ok=True)
    Path(settings.temp_dir).mkdir(parents=True, exist_ok=True)
    Path(settings.data_dir).mkdir(parents=True, exist_ok=True)

    await get_job_store().initialize()
    configure_run_queue()
    run_queue = get_run_queue()
    await run_queue.start()
    await resume_auto_jobs()

    sweeper = RetentionSweeper(settings=settings)
    sweeper.start_background()

    logger.info("=" * 60)
    logger.info("PromptReel - Prompt to Narrated Video")
    logger.info("=" * 60)
    logger.info(f"Output directory: {settings.output_dir}")
    logger.info(f"Temp directory: {settings.temp_dir}")
    logger.info(f"Data directory: {settings.data_dir}")
    logger.info(f"Queue workers: {settings.job_worker_concurrency}")
    logger.info(f"Queue max pending jobs: {settings.max_pending_jobs}")
    logger.info(f"Retention: {settings.retention_days} days")

    if settings.gemini_api_key:
        logger.info("[OK] Gemini AI configured")
    else:
        logger.warning("[!] Gemini API key not set (script and keyword generation disabled)")

    if settings.elevenlabs_api_key:
        logger.info("[OK] ElevenLabs configured")
    else:
        logger.warning("[!] ElevenLabs API key not set (narration disabled)")

    if settings.pexels_api_key:
        logger.info("[OK] Pexels configured")
    else:
        logger.warning("[!] Pexels API key not set (stock footage disabled)")

    if settings.s3_enabled:
        logger.info(f"[OK] AWS S3 configured (bucket {settings.s3_bucket_name})")
    else:
        logger.info("[-] AWS S3 not configured (storing media locally)")

    if settings.jamendo_client_id:
        logger.info("[OK] Jamendo configured")
    else:
        logger.info("[-] Jamendo not configured (no background music)")

    if settings.api_key:
        logger.info("[OK] API key authentication enabled")
    else:
        logger.warning("[!] API key authentication disabled")

    logger.info("=" * 60)
    logger.info("API Docs: http://localhost:8000/docs")
    logger.info("=" * 60)

    yield

    sweeper.stop()
    await run_queue.stop()
    logger.info("Shutting down PromptReel...")


app = FastAPI(
    title="PromptReel",
    description="Turns a text prompt into a narrated, captioned short video",
    version=settings.app_version,
    lifespan=lifespan
)

cors_origins = settings.cors_allowed_origins or ["http://localhost:3000", "http://127.0.0.1:3000"]
cors_allow_credentials = "*" not in cors_origins
app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=cors_allow_credentials,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ============================================================================
# API Key Authentication
# ============================================================================

PUBLIC_PATHS = {
    "/",
    "/health",
    "/docs",
    "/redoc",
    "/openapi.json",
    "/api/settings/health",
    "/favicon.ico",
}


def _extract_api_key(request: Request) -> str:
    api_key = request.headers.get("x-api-key", "").strip()
    if api_key:
        return api_key

    auth_header = request.headers.get("authorization", "")
    if auth_header.lower().startswith("bearer "):
        return auth_header.split(" ", 1)[1].strip()
    return ""


@app.middleware("http")
async def api_key_auth_middleware(request: Request, call_next):
    settings = get_settings()
    if not settings.api_key or request.url.path in PUBLIC_PATHS:
        return await call_next(request)

    if _extract_api_key(request) != settings.api_key:
        return JSONResponse(
            status_code=401,
            content={"detail": "Unauthorized: invalid or missing API key"},
        )
    return await call_next(request)


# ============================================================================
# Global Exception Handlers
# ============================================================================

def status_for(exc: PromptReelError) -> int:
    if isinstance(exc, PreconditionError):
        return 409
    if isinstance(exc, JobNotFoundError):
        return 404
    return 400 if exc.recoverable else 500


@app.exception_handler(PromptReelError)
async def promptreel_exception_handler(request: Request, exc: PromptReelError):
    """Handle all PromptReel custom exceptions"""
    status_code = status_for(exc)
    if status_code >= 500:
        logger.error(f"PromptReelError [{exc.code}]: {exc.message}")
    else:
        logger.warning(f"PromptReelError [{exc.code}]: {exc.message}")
    return JSONResponse(status_code=status_code, content=exc.to_dict())


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Handle any unhandled exceptions"""
    logger.exception(f"Unhandled exception: {exc}")
    return JSONResponse(
        status_code=500,
        content={
            "error": "INTERNAL_ERROR",
            "message": "An unexpected error occurred. Please try again.",
            "recoverable": True,
            "recovery_hint": "If this persists, check the server logs for details."
        }
    )


app.include_router(jobs_router)
app.include_router(settings_router)
app.include_router(audit_router)


@app.get("/")
async def root():
    return {"message": "PromptReel API", "docs": "/docs"}


@app.get("/health")
async def health():
    """Health check endpoint"""
    return {"status": "healthy", "app": "PromptReel"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "promptreel.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True
    )
