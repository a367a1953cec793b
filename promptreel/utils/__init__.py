"""Utils package initialization"""
from .logger import setup_logger, get_logger
from .exceptions import (
    PromptReelError,
    PreconditionError,
    StageFailedError,
    TimingCoverageError,
    NoTimingDataError,
    ProviderError,
    APIKeyError,
    RateLimitError,
    ValidationError,
    EncodingError,
    StorageError,
    JobNotFoundError
)
from .retry import retry_async

__all__ = [
    "setup_logger",
    "get_logger",
    "PromptReelError",
    "PreconditionError",
    "StageFailedError",
    "TimingCoverageError",
    "NoTimingDataError",
    "ProviderError",
    "APIKeyError",
    "RateLimitError",
    "ValidationError",
    "EncodingError",
    "StorageError",
    "JobNotFoundError",
    "retry_async"
]
