"""
Generation metrics.

One record per job per provider it ran on, so a job that fell back leaves
two. Records are kept in memory, oldest dropped first once
``settings.metrics_max_records`` is reached.
"""
from collections import Counter, deque
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Deque, Dict, Iterable, List, Optional

from pydantic import BaseModel, Field, field_serializer

from shared.config import settings
from shared.logging import get_logger
from shared.models.generation import GenerationJob, utcnow
from modules.prompt_optimizer.scorer import grade_for

logger = get_logger("analytics.metrics")


class GenerationMetric(BaseModel):
    """Outcome of one job on one provider."""

    job_id: str
    shot_id: str
    provider_id: str
    success: bool
    duration_seconds: float = Field(ge=0, description="Wall-clock time holding the provider slot")
    attempts: int = Field(default=0, ge=0, description="Provider submissions made on this provider")
    estimated_cost: Decimal = Decimal("0")
    prompt_score: Optional[int] = None
    error_kind: Optional[str] = None
    recorded_at: datetime = Field(default_factory=utcnow)

    @field_serializer("estimated_cost")
    def serialize_decimal(self, value: Decimal) -> str:
        """Serialize Decimal to string."""
        return str(value)

    @field_serializer("recorded_at")
    def serialize_datetime(self, value: datetime) -> str:
        """Serialize datetime to ISO format string."""
        return value.isoformat()


class ProviderStats(BaseModel):
    """Aggregated metrics for one provider."""

    provider_id: str
    total: int = 0
    success_count: int = 0
    failure_count: int = 0
    success_rate: float = 0.0
    average_seconds: float = 0.0
    min_seconds: float = 0.0
    max_seconds: float = 0.0
    total_cost: Decimal = Decimal("0")
    average_cost: Decimal = Decimal("0")
    average_attempts: float = 0.0
    average_prompt_score: Optional[float] = None
    prompt_grades: Dict[str, int] = Field(default_factory=dict)
    common_errors: List[Dict] = Field(default_factory=list)

    @field_serializer("total_cost", "average_cost")
    def serialize_decimal(self, value: Decimal) -> str:
        """Serialize Decimal to string."""
        return str(value)


def calculate_provider_stats(provider_id: str, metrics: Iterable[GenerationMetric]) -> ProviderStats:
    """
    Aggregate the metrics of one provider.

    Cost only counts successful generations, matching what a batch reports
    as spent. Errors are the top five error kinds by count.
    """
    records = [m for m in metrics if m.provider_id == provider_id]
    if not records:
        return ProviderStats(provider_id=provider_id)

    total = len(records)
    successes = [m for m in records if m.success]
    durations = [m.duration_seconds for m in records]
    total_cost = sum((m.estimated_cost for m in successes), Decimal("0"))
    average_cost = (total_cost / len(successes)) if successes else Decimal("0")

    scores = [m.prompt_score for m in records if m.prompt_score is not None]
    grades = Counter(grade_for(s) for s in scores)
    errors = Counter(m.error_kind for m in records if not m.success and m.error_kind)

    return ProviderStats(
        provider_id=provider_id,
        total=total,
        success_count=len(successes),
        failure_count=total - len(successes),
        success_rate=len(successes) / total,
        average_seconds=sum(durations) / total,
        min_seconds=min(durations),
        max_seconds=max(durations),
        total_cost=total_cost,
        average_cost=average_cost.quantize(Decimal("0.0001"), rounding=ROUND_HALF_UP),
        average_attempts=sum(m.attempts for m in records) / total,
        average_prompt_score=sum(scores) / len(scores) if scores else None,
        prompt_grades=dict(grades),
        common_errors=[{"kind": kind, "count": count} for kind, count in errors.most_common(5)],
    )


class MetricsRecorder:
    """Bounded in-memory store of generation metrics."""

    def __init__(self, max_records: Optional[int] = None):
        self._records: Deque[GenerationMetric] = deque(maxlen=max_records or settings.metrics_max_records)

    def record(
        self,
        job: GenerationJob,
        provider_id: str,
        duration_seconds: float,
        attempts: int,
        error_kind: Optional[str] = None,
    ) -> GenerationMetric:
        """Record the outcome of ``job`` on ``provider_id``; no ``error_kind`` means success."""
        metric = GenerationMetric(
            job_id=str(job.id),
            shot_id=job.shot_id,
            provider_id=provider_id,
            success=error_kind is None,
            duration_seconds=max(0.0, duration_seconds),
            attempts=attempts,
            estimated_cost=job.estimated_cost,
            prompt_score=job.prompt_score,
            error_kind=error_kind,
        )
        self._records.append(metric)
        logger.debug(
            f"Recorded generation metric for shot {job.shot_id} on {provider_id}",
            extra={
                "job_id": metric.job_id,
                "provider_id": provider_id,
                "success": metric.success,
                "duration_seconds": round(metric.duration_seconds, 3),
                "error_kind": error_kind,
            }
        )
        return metric

    @property
    def records(self) -> List[GenerationMetric]:
        return list(self._records)

    def provider_stats(self) -> Dict[str, ProviderStats]:
        """Stats per provider that has at least one record."""
        provider_ids = sorted({m.provider_id for m in self._records})
        return {pid: calculate_provider_stats(pid, self._records) for pid in provider_ids}

    def __len__(self) -> int:
        return len(self._records)
