"""
Batch endpoints.

Start a generation batch from a shot list, read its progress, cancel it.
"""

from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Path, status
from pydantic import BaseModel, Field

from shared.errors import PipelineError
from shared.logging import get_logger
from shared.models.generation import GenerationRequest
from api_gateway.dependencies import get_batch_manager
from modules.batch_manager import BatchManager, BatchRun

logger = get_logger("api_gateway.routes.batches")

router = APIRouter()


class BatchCreateRequest(BaseModel):
    requests: List[GenerationRequest] = Field(min_length=1)
    budget_usd: Optional[Decimal] = Field(default=None, gt=0)
    retry_failed: bool = False


def _batch_view(run: BatchRun) -> dict:
    progress = run.get_progress()
    return {
        "batch_id": run.id,
        "progress": {**progress.model_dump(), "percent": progress.percent},
        "finished": run.is_finished,
        "estimated_cost": str(run.estimated_cost),
        "total_cost": str(run.total_cost),
        "results": run.results(),
        "jobs": [job.model_dump(mode="json") for job in run.jobs],
    }


def _get_run(manager: BatchManager, batch_id: str) -> BatchRun:
    run = manager.get_batch(batch_id)
    if run is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Batch not found")
    return run


@router.post("/batches", status_code=status.HTTP_202_ACCEPTED)
async def create_batch(
    body: BatchCreateRequest,
    manager: BatchManager = Depends(get_batch_manager),
):
    """Start a batch; jobs run in the background on the server's event loop."""
    try:
        run = manager.start_batch(body.requests, budget_usd=body.budget_usd, retry_failed=body.retry_failed)
    except PipelineError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.to_dict())
    logger.info(f"Batch {run.id} accepted", extra={"batch_id": run.id, "jobs": len(run.jobs)})
    return _batch_view(run)


@router.get("/batches/{batch_id}")
async def get_batch(
    batch_id: str = Path(...),
    manager: BatchManager = Depends(get_batch_manager),
):
    return _batch_view(_get_run(manager, batch_id))


@router.post("/batches/{batch_id}/cancel")
async def cancel_batch(
    batch_id: str = Path(...),
    manager: BatchManager = Depends(get_batch_manager),
):
    """Cancel every queued or running job of the batch. Finished jobs are kept."""
    run = _get_run(manager, batch_id)
    if not run.is_finished:
        run.cancel()
        logger.info(f"Batch {batch_id} cancelled", extra={"batch_id": batch_id})
    return _batch_view(run)
