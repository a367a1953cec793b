"""
PromptReel Configuration
Centralized settings management using Pydantic Settings
"""

import sys
from pydantic_settings import BaseSettings
from pydantic import Field, field_validator
from typing import List, Optional
from functools import lru_cache


def _default_font_dirs() -> List[str]:
    if sys.platform == "darwin":
        return ["/Library/Fonts", "~/Library/Fonts", "/System/Library/Fonts"]
    if sys.platform.startswith("win"):
        return ["C:\\Windows\\Fonts"]
    return ["/usr/local/share/fonts", "/usr/share/fonts", "~/.fonts"]


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    # ==========================================================================
    # Application
    # ==========================================================================
    app_version: str = "0.4.0"
    log_level: str = Field(default="INFO", description="Root log level")
    log_file: Optional[str] = Field(default=None, description="Optional log file path")

    # ==========================================================================
    # Google Gemini
    # ==========================================================================
    gemini_api_key: str = Field(default="", description="Google Gemini API Key")
    gemini_model: str = Field(default="gemini-2.0-flash", description="Gemini model for all text calls")

    # ==========================================================================
    # AWS S3
    # ==========================================================================
    aws_access_key_id: str = Field(default="", description="AWS Access Key ID")
    aws_secret_access_key: str = Field(default="", description="AWS Secret Key")
    aws_region: str = Field(default="us-east-1", description="AWS Region")
    s3_bucket_name: str = Field(default="", description="S3 Bucket Name")
    presigned_url_expiry: int = Field(default=3600, ge=60, le=604800, description="Presigned URL lifetime (s)")

    # ==========================================================================
    # ElevenLabs
    # ==========================================================================
    elevenlabs_api_key: str = Field(default="", description="ElevenLabs API Key")
    elevenlabs_model: str = Field(default="eleven_multilingual_v2", description="ElevenLabs TTS model")
    elevenlabs_output_format: str = Field(default="mp3_44100_128", description="Narration audio format")

    # ==========================================================================
    # Media Providers
    # ==========================================================================
    pexels_api_key: str = Field(default="", description="Pexels API Key")
    google_api_key: str = Field(default="", description="Google Custom Search API Key")
    google_search_engine_id: str = Field(default="", description="Google Custom Search engine id")
    image_search_provider: str = Field(default="google", description="Exact-image provider: google or pexels")
    jamendo_client_id: str = Field(default="", description="Jamendo client id for background music")

    # ==========================================================================
    # Timeouts & Retries
    # ==========================================================================
    provider_timeout: float = Field(default=10.0, gt=0, description="Search request timeout (s)")
    download_timeout: float = Field(default=30.0, gt=0, description="Media download timeout (s)")
    llm_timeout: float = Field(default=30.0, gt=0, description="LLM / TTS call timeout (s)")

    # ==========================================================================
    # Pipeline Settings
    # ==========================================================================
    max_segment_duration: float = Field(default=2.0, gt=0, le=10, description="Max visual segment length (s)")
    trailing_pad: float = Field(default=0.3, ge=0, le=2, description="Pad after the last word (s)")
    clip_batch_size: int = Field(default=3, ge=1, le=8, description="Concurrent clip acquisitions")
    max_candidates: int = Field(default=15, ge=1, le=50, description="Stock candidates sent to the ranker")
    search_attempts: int = Field(default=3, ge=1, le=5, description="Search attempts per query")
    photo_clip_duration: float = Field(default=3.0, gt=0, description="Photo motion clip length (s)")
    photo_clip_fps: int = Field(default=25, ge=10, le=60)
    output_fps: int = Field(default=30, ge=10, le=60)
    voice_volume: float = Field(default=1.0, ge=0, le=2)
    music_volume: float = Field(default=0.1, ge=0, le=1)
    loop_music: bool = Field(default=False, description="Loop music under long narration instead of truncating")
    subtitle_script_threshold: int = Field(default=32000, ge=1000, description="Filter length that moves captions to a script file")
    font_dirs: List[str] = Field(default_factory=_default_font_dirs, description="Directories searched for caption fonts")

    # ==========================================================================
    # Queue & Retention
    # ==========================================================================
    job_worker_concurrency: int = Field(default=1, ge=1, le=4, description="Concurrent pipeline workers")
    max_pending_jobs: int = Field(default=10, ge=1, le=200, description="Max queued pending jobs")
    retention_days: int = Field(default=30, ge=0, description="Delete jobs older than this (0 disables)")
    retention_check_interval: int = Field(default=3600, ge=60, description="Retention sweep interval (s)")

    # ==========================================================================
    # Security
    # ==========================================================================
    api_key: str = Field(default="", description="Optional API key for /api routes")
    cors_allowed_origins: List[str] = Field(
        default_factory=lambda: [
            "http://localhost:8000",
            "http://127.0.0.1:8000"
        ],
        description="Allowed CORS origins"
    )

    # ==========================================================================
    # Paths
    # ==========================================================================
    output_dir: str = Field(default="output", description="Local object store and final videos")
    temp_dir: str = Field(default="temp", description="Temporary processing directory")
    data_dir: str = Field(default="data", description="Persistent application data directory")

    @field_validator("cors_allowed_origins", "font_dirs", mode="before")
    @classmethod
    def parse_comma_list(cls, value):
        if isinstance(value, str):
            return [item.strip() for item in value.split(",") if item.strip()]
        return value

    @field_validator("image_search_provider")
    @classmethod
    def check_image_provider(cls, value: str) -> str:
        value = value.lower()
        if value not in ("google", "pexels"):
            raise ValueError("image_search_provider must be 'google' or 'pexels'")
        return value

    @property
    def s3_enabled(self) -> bool:
        return bool(self.aws_access_key_id and self.aws_secret_access_key and self.s3_bucket_name)

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
    }


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()
