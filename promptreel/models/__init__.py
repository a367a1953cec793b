"""Models package initialization"""
from .job import (
    Stage, JobStatus, GenerationJob, JobCreate, JobPage, ClipTiming, SpeechMark, ResolvedClip
)

__all__ = [
    "Stage", "JobStatus", "GenerationJob", "JobCreate", "JobPage", "ClipTiming", "SpeechMark", "ResolvedClip"
]
