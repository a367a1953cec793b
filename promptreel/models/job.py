"""
Generation Job Models
One prompt-to-video request and the persisted output of each pipeline stage
"""

from pydantic import BaseModel, Field, computed_field, field_validator
from typing import Any, Dict, List, Literal, Optional
from enum import Enum
from datetime import datetime
import uuid


class Stage(str, Enum):
    """Pipeline stages in execution order; values are the job's block field names"""
    SCRIPT = "script"
    AUDIO = "audio"
    KEYWORDS = "keywords"
    CLIPS = "clips"
    BASE_VIDEO = "base_video"
    FINAL_VIDEO = "final_video"


STAGE_ORDER: List[Stage] = list(Stage)


class JobStatus(str, Enum):
    """Display status, derived from which stage blocks exist"""
    INITIALIZED = "initialized"
    SCRIPT_GENERATED = "script_generated"
    AUDIO_GENERATED = "audio_generated"
    KEYWORDS_GENERATED = "keywords_generated"
    CLIPS_PROCESSED = "clips_processed"
    VIDEO_MERGED = "video_merged"
    FINAL_VIDEO_READY = "final_video_ready"


_STAGE_STATUS = {
    Stage.SCRIPT: JobStatus.SCRIPT_GENERATED,
    Stage.AUDIO: JobStatus.AUDIO_GENERATED,
    Stage.KEYWORDS: JobStatus.KEYWORDS_GENERATED,
    Stage.CLIPS: JobStatus.CLIPS_PROCESSED,
    Stage.BASE_VIDEO: JobStatus.VIDEO_MERGED,
    Stage.FINAL_VIDEO: JobStatus.FINAL_VIDEO_READY,
}


class Provenance(str, Enum):
    GENERATED = "generated"
    USER = "user"


class AudioScriptSource(str, Enum):
    PROJECT_SCRIPT = "project_script"
    CUSTOM_FOR_AUDIO = "custom_for_audio"


class TimingsSource(str, Enum):
    FROM_KEYWORDS_STEP = "from_keywords_step"
    CUSTOM_FOR_CLIPS_STEP = "custom_for_clips_step"


class KeywordType(str, Enum):
    """search: needs an exact real-world image. stock: any matching footage"""
    SEARCH = "search"
    STOCK = "stock"


# ============================================================================
# Initial parameters
# ============================================================================

class GenerationOptions(BaseModel):
    aspect_ratio: str = Field(default="9:16", pattern=r"^\d+(\.\d+)?:\d+(\.\d+)?$")
    language: str = Field(default="en-US", description="Narration locale")
    voice_id: Optional[str] = Field(None, description="TTS voice; language default when omitted")
    two_phase_script: bool = Field(default=False, description="Research facts before writing")

    model_config = {"frozen": True}


class InitialParams(BaseModel):
    prompt: str = Field(..., min_length=1, max_length=2000)
    options: GenerationOptions = Field(default_factory=GenerationOptions)

    model_config = {"frozen": True}


# ============================================================================
# Stage blocks
# ============================================================================

class SpeechMark(BaseModel):
    """Word or sentence timing mark; times are milliseconds from narration start"""
    type: Literal["word", "sentence"]
    value: str
    time: int = Field(..., ge=0)
    duration: Optional[int] = Field(None, ge=0)

    @property
    def start_seconds(self) -> float:
        return self.time / 1000.0


class ClipTiming(BaseModel):
    """A narration slice paired with its visual label(s)"""
    keyword: str = Field(..., min_length=1, description="Comma-separated label alternatives")
    keyword_type: KeywordType = KeywordType.SEARCH
    start_time: float = Field(..., ge=0)
    duration: float = Field(..., gt=0)
    sentence_text: str = ""

    @property
    def end_time(self) -> float:
        return self.start_time + self.duration

    def keyword_options(self) -> List[str]:
        return [part.strip() for part in self.keyword.split(",") if part.strip()]


class ScriptBlock(BaseModel):
    content: str
    mood: str = "neutral"
    source: Provenance = Provenance.GENERATED


class AudioBlock(BaseModel):
    audio_url: str
    speech_marks: List[SpeechMark] = Field(default_factory=list)
    background_music_url: Optional[str] = None
    duration: float = 0.0
    script_content_used: str
    script_source: AudioScriptSource = AudioScriptSource.PROJECT_SCRIPT

    @property
    def word_marks(self) -> List[SpeechMark]:
        return [mark for mark in self.speech_marks if mark.type == "word"]


class KeywordsBlock(BaseModel):
    clip_timings: List[ClipTiming]
    source: Provenance = Provenance.GENERATED


class ResolvedClip(BaseModel):
    clip_url: str
    keyword: str
    start_time: float
    duration: float = Field(..., description="Requested duration")
    actual_duration: float
    media_kind: Literal["video", "photo"] = "video"
    effect: Optional[str] = None


class ClipsBlock(BaseModel):
    processed_clips: List[ResolvedClip]
    clip_timings_used: List[ClipTiming]
    timings_source: TimingsSource = TimingsSource.FROM_KEYWORDS_STEP
    skipped_timings: List[ClipTiming] = Field(default_factory=list)

    @field_validator("processed_clips")
    @classmethod
    def sort_chronologically(cls, value: List[ResolvedClip]) -> List[ResolvedClip]:
        return sorted(value, key=lambda clip: clip.start_time)


class BaseVideoBlock(BaseModel):
    merged_video_url: str


class FinalVideoBlock(BaseModel):
    video_url: str


class StageFailure(BaseModel):
    stage: Stage
    reason: str
    failed_at: datetime = Field(default_factory=datetime.utcnow)


# ============================================================================
# Job
# ============================================================================

class GenerationJob(BaseModel):
    """A prompt-to-video request with one optional block per completed stage"""
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    user_id: str
    initial_params: InitialParams
    title: str = ""
    script: Optional[ScriptBlock] = None
    audio: Optional[AudioBlock] = None
    keywords: Optional[KeywordsBlock] = None
    clips: Optional[ClipsBlock] = None
    base_video: Optional[BaseVideoBlock] = None
    final_video: Optional[FinalVideoBlock] = None
    last_error: Optional[StageFailure] = None
    auto_advance: bool = False
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    def model_post_init(self, __context: Any):
        if not self.title:
            self.title = self.initial_params.prompt[:100]

    def block(self, stage: Stage) -> Optional[BaseModel]:
        return getattr(self, stage.value)

    def has_block(self, stage: Stage) -> bool:
        return self.block(stage) is not None

    @computed_field
    @property
    def status(self) -> JobStatus:
        current = JobStatus.INITIALIZED
        for stage in STAGE_ORDER:
            if self.has_block(stage):
                current = _STAGE_STATUS[stage]
        return current

    @property
    def is_complete(self) -> bool:
        return self.final_video is not None

    def summary(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "status": self.status.value,
            "final_video_url": self.final_video.video_url if self.final_video else None,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


class JobCreate(BaseModel):
    """Request model for creating a new generation job"""
    prompt: str = Field(..., min_length=1, max_length=2000)
    aspect_ratio: str = Field(default="9:16", pattern=r"^\d+(\.\d+)?:\d+(\.\d+)?$")
    language: str = "en-US"
    voice_id: Optional[str] = None
    two_phase_script: bool = False
    auto_run: bool = Field(default=True, description="Queue a full pipeline run immediately")

    def to_initial_params(self) -> InitialParams:
        return InitialParams(
            prompt=self.prompt,
            options=GenerationOptions(
                aspect_ratio=self.aspect_ratio,
                language=self.language,
                voice_id=self.voice_id,
                two_phase_script=self.two_phase_script,
            ),
        )


class JobPage(BaseModel):
    items: List[Dict[str, Any]]
    next_cursor: Optional[str] = None
    has_more: bool = False
    total_count: int = 0
