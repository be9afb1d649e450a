"""
Analytics endpoints.

Per-provider generation stats from the batch manager's metrics.
"""

from fastapi import APIRouter, Depends

from api_gateway.dependencies import get_batch_manager
from modules.batch_manager import BatchManager

router = APIRouter()


@router.get("/metrics/providers")
async def get_provider_metrics(manager: BatchManager = Depends(get_batch_manager)):
    """
    Success rate, timing, cost and retry stats per provider.

    Returns:
        Dict with the number of recorded generations and stats keyed by provider id
    """
    stats = manager.metrics.provider_stats()
    return {
        "recorded": len(manager.metrics),
        "providers": {pid: s.model_dump(mode="json") for pid, s in stats.items()},
    }
