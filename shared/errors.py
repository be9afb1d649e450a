"""
Error taxonomy.

Typed errors raised by the orchestration core. Every error carries a ``kind``
so callers can tell transient faults from capability mismatches and fatal
failures without isinstance chains.
"""

from typing import Any, Dict, Optional


class ErrorKind:
    """Error classification tags."""

    TRANSIENT = "transient"
    CAPABILITY = "capability"
    FATAL = "fatal"
    EXHAUSTED_RETRIES = "exhausted-retries"
    CANCELLED = "cancelled"


class PipelineError(Exception):
    """Base error for all pipeline failures."""

    kind = ErrorKind.FATAL

    def __init__(
        self,
        message: str,
        job_id: Optional[Any] = None,
        phase: Optional[str] = None,
        provider_id: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.job_id = job_id
        self.phase = phase
        self.provider_id = provider_id

    def to_dict(self) -> Dict[str, Any]:
        """User-visible error report."""
        return {
            "kind": self.kind,
            "error": type(self).__name__,
            "message": self.message,
            "phase": self.phase,
            "provider_id": self.provider_id,
            "job_id": str(self.job_id) if self.job_id is not None else None,
        }


# Transient


class RetryableError(PipelineError):
    """Transient failure (network, 5xx, overloaded provider)."""

    kind = ErrorKind.TRANSIENT


class RateLimitError(RetryableError):
    """Provider rate limit hit."""

    def __init__(self, message: str, retry_after: Optional[float] = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.retry_after = retry_after


class GenerationTimeoutError(RetryableError):
    """Provider poll loop exceeded its wall-clock budget."""


# Capability


class CapabilityError(PipelineError):
    """Request exceeds what a specific provider supports."""

    kind = ErrorKind.CAPABILITY


class UnsupportedRequestError(CapabilityError):
    """Duration, resolution or feature not supported by the provider."""


class ContentPolicyError(CapabilityError):
    """Provider rejected the request on content policy grounds."""


# Fatal


class ConfigError(PipelineError):
    """Missing credentials or invalid configuration."""


class ValidationError(PipelineError):
    """Malformed request or invalid data."""


class QuotaExhaustedError(PipelineError):
    """Account quota or credits exhausted."""


class GenerationError(PipelineError):
    """Provider reported a permanent generation failure."""


class CompositionError(PipelineError):
    """Encoder process failed."""

    def __init__(self, message: str, stage: Optional[str] = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.stage = stage


class EncoderNotFoundError(CompositionError):
    """Encoder binary is not installed."""


class BudgetExceededError(PipelineError):
    """Estimated spend would exceed the batch budget."""


class EpisodeAssemblyError(PipelineError):
    """Episode assembly failed at a given phase."""


class JobCancelledError(PipelineError):
    """Job or render was cancelled."""

    kind = ErrorKind.CANCELLED


class RetryExhaustedError(PipelineError):
    """Transient failure persisted past the retry budget."""

    kind = ErrorKind.EXHAUSTED_RETRIES

    def __init__(self, last_error: BaseException, attempts: int, **kwargs: Any):
        super().__init__(
            f"Gave up after {attempts} attempts: {last_error}",
            **kwargs,
        )
        self.last_error = last_error
        self.attempts = attempts
        if self.provider_id is None:
            self.provider_id = getattr(last_error, "provider_id", None)
        if self.job_id is None:
            self.job_id = getattr(last_error, "job_id", None)

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["attempts"] = self.attempts
        data["cause"] = str(self.last_error)
        return data


def error_kind(exc: BaseException) -> str:
    """Return the taxonomy tag for any exception."""
    if isinstance(exc, PipelineError):
        return exc.kind
    return ErrorKind.FATAL
