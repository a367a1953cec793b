"""Services package initialization"""
from .job_store import JobStore, get_job_store
from .object_store import S3ObjectStore, LocalObjectStore, get_object_store
from .run_queue import RunQueue, get_run_queue
from .pipeline import GenerationPipeline, get_pipeline
from .retention import RetentionSweeper

__all__ = [
    "JobStore",
    "get_job_store",
    "S3ObjectStore",
    "LocalObjectStore",
    "get_object_store",
    "RunQueue",
    "get_run_queue",
    "GenerationPipeline",
    "get_pipeline",
    "RetentionSweeper"
]
