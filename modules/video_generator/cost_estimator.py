"""
Cost estimation for video generation.

Per-second pricing from the provider table.
"""
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Tuple

from shared.models.generation import GenerationRequest, ProviderProfile


def billable_duration(profile: ProviderProfile, target_duration: float) -> float:
    """
    Duration the provider will actually bill for.

    Discrete-duration backends round up to the next accepted duration.
    """
    if profile.supported_durations:
        for duration in sorted(profile.supported_durations):
            if duration >= target_duration:
                return float(duration)
        return float(max(profile.supported_durations))
    return min(target_duration, profile.max_duration_seconds)


def estimate_job_cost(profile: ProviderProfile, request: GenerationRequest) -> Decimal:
    """Estimated USD cost of one generation."""
    seconds = Decimal(str(billable_duration(profile, request.target_duration_seconds)))
    cost = profile.cost_per_second * seconds
    return cost.quantize(Decimal("0.0001"), rounding=ROUND_HALF_UP)


def estimate_batch_cost(pairs: Iterable[Tuple[ProviderProfile, GenerationRequest]]) -> Decimal:
    """Sum of estimated costs for (profile, request) pairs."""
    return sum((estimate_job_cost(profile, request) for profile, request in pairs), Decimal("0"))
