"""
Custom Exceptions for PromptReel
Structured error handling with recovery hints
"""

from typing import Optional, Dict, Any


class PromptReelError(Exception):
    """Base exception for all PromptReel errors"""

    def __init__(
        self,
        message: str,
        code: str = "UNKNOWN_ERROR",
        recoverable: bool = False,
        recovery_hint: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.recoverable = recoverable
        self.recovery_hint = recovery_hint
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to JSON-serializable dict"""
        return {
            "error": self.code,
            "message": self.message,
            "recoverable": self.recoverable,
            "recovery_hint": self.recovery_hint,
            "details": self.details
        }


# ============================================================================
# Pipeline Errors
# ============================================================================

class PreconditionError(PromptReelError):
    """A stage was requested before the data it depends on exists"""

    def __init__(self, stage: str, missing: str):
        super().__init__(
            message=f"Cannot run stage '{stage}': {missing} is missing",
            code="PRECONDITION_FAILED",
            recoverable=True,
            recovery_hint=f"Run the stage that produces {missing} first.",
            details={"stage": stage, "missing": missing}
        )


class StageFailedError(PromptReelError):
    """A stage exhausted its fallbacks; earlier stage results are untouched"""

    def __init__(self, stage: str, reason: str, job_id: Optional[str] = None):
        super().__init__(
            message=f"Stage {stage} failed: {reason}",
            code="STAGE_FAILED",
            recoverable=True,
            recovery_hint="Fix the underlying condition and rerun the stage. Completed stages are kept.",
            details={"stage": stage, "reason": reason, "job_id": job_id}
        )


class TimingCoverageError(PromptReelError):
    """Segments do not cover the narration"""

    def __init__(self, message: str, **kwargs):
        super().__init__(
            message=message,
            code="TIMING_COVERAGE_ERROR",
            recoverable=False,
            recovery_hint="Regenerate the audio or supply clip timings that span the whole narration.",
            details=kwargs
        )


class NoTimingDataError(TimingCoverageError):
    """Narration has no word-level timing marks"""

    def __init__(self, job_id: Optional[str] = None):
        super().__init__("No timing data: the narration has no word-level speech marks", job_id=job_id)
        self.code = "NO_TIMING_DATA"


# ============================================================================
# Provider Errors
# ============================================================================

class ProviderError(PromptReelError):
    """An external collaborator call failed"""

    def __init__(self, service: str, message: str, retryable: bool = True, **kwargs):
        super().__init__(
            message=f"{service}: {message}",
            code="PROVIDER_ERROR",
            recoverable=True,
            recovery_hint=f"The {service} service may be unavailable. Try again later.",
            details={"service": service, **kwargs}
        )
        self.service = service
        self.retryable = retryable


class APIKeyError(ProviderError):
    """Missing or invalid API key"""

    def __init__(self, service: str):
        super().__init__(service, "API key is missing or invalid", retryable=False)
        self.code = "API_KEY_ERROR"
        self.recovery_hint = f"Configure the {service} API key in the .env file."


class RateLimitError(ProviderError):
    """API rate limit exceeded"""

    def __init__(self, service: str, retry_after: Optional[int] = None):
        super().__init__(service, "rate limit exceeded", retry_after=retry_after)
        self.code = "RATE_LIMIT_ERROR"
        if retry_after:
            self.recovery_hint = f"Wait {retry_after} seconds before retrying."


# ============================================================================
# Media Errors
# ============================================================================

class ValidationError(PromptReelError):
    """Downloaded or synthesized media failed a sanity check"""

    def __init__(self, message: str, path: Optional[str] = None, **kwargs):
        super().__init__(
            message=message,
            code="MEDIA_VALIDATION_ERROR",
            recoverable=True,
            recovery_hint="The next candidate or effect is tried automatically.",
            details={"path": path, **kwargs}
        )


class EncodingError(PromptReelError):
    """FFmpeg execution error"""

    def __init__(self, message: str, command: Optional[str] = None, stderr: Optional[str] = None):
        super().__init__(
            message=message,
            code="ENCODING_ERROR",
            recoverable=True,
            recovery_hint="Ensure FFmpeg is installed and in PATH. Check the input media isn't corrupted.",
            details={"command": command, "stderr": stderr[-500:] if stderr else None}
        )


# ============================================================================
# Storage Errors
# ============================================================================

class StorageError(PromptReelError):
    """Job store or object store failure"""

    def __init__(self, message: str, **kwargs):
        super().__init__(
            message=message,
            code="STORAGE_ERROR",
            recoverable=True,
            recovery_hint="Check disk space and AWS credentials, then retry.",
            details=kwargs
        )


class JobNotFoundError(PromptReelError):
    """Job not found"""

    def __init__(self, job_id: str):
        super().__init__(
            message=f"Job not found: {job_id}",
            code="JOB_NOT_FOUND",
            recoverable=False,
            details={"job_id": job_id}
        )
