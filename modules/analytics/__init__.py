"""
Analytics module.

Per-provider generation metrics: success rate, timing, cost and retries.
"""

from modules.analytics.metrics import (
    GenerationMetric,
    MetricsRecorder,
    ProviderStats,
    calculate_provider_stats,
)

__all__ = ["GenerationMetric", "MetricsRecorder", "ProviderStats", "calculate_provider_stats"]
