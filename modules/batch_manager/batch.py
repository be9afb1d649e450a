"""
BatchRun: one submitted set of generation requests.

Owns the job list (in submission order), the queue of jobs waiting for a
slot and the tasks currently running. All mutation happens on the event
loop through BatchManager callbacks.
"""
import asyncio
import bisect
import inspect
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional

from shared.logging import get_logger
from shared.models.generation import (
    BatchProgress,
    GenerationJob,
    JobStatus,
    ProviderProfile,
)

logger = get_logger("batch_manager.batch")

ProgressCallback = Callable[[BatchProgress], Any]


@dataclass(order=True)
class WorkItem:
    """A job waiting for (or holding) a slot on a specific provider."""

    index: int
    job: GenerationJob = field(compare=False)
    provider_id: str = field(compare=False)
    started_at: Optional[float] = field(default=None, compare=False)
    attempts_at_start: int = field(default=0, compare=False)


class BatchRun:
    """Live view of one batch."""

    def __init__(
        self,
        batch_id: str,
        jobs: List[GenerationJob],
        profiles: List[ProviderProfile],
        budget_usd: Optional[Decimal] = None,
        on_progress: Optional[ProgressCallback] = None,
    ):
        self.id = batch_id
        self.jobs = jobs
        self.profiles = profiles
        self.budget_usd = budget_usd
        self.on_progress = on_progress
        self.committed_cost = Decimal("0")
        self.estimated_cost = Decimal("0")
        self.cancel_requested = False
        self.pending: List[WorkItem] = []
        self.running: Dict[asyncio.Task, WorkItem] = {}
        self._done = asyncio.Event()
        self._canceller: Optional[Callable[["BatchRun"], None]] = None

    def enqueue(self, item: WorkItem) -> None:
        """Queue ``item`` keeping submission order."""
        bisect.insort(self.pending, item)

    def get_progress(self) -> BatchProgress:
        """
        Snapshot of job counts.

        A job waiting in the queue counts as queued even when an earlier
        provider attempt already moved its status on (fallback).
        """
        waiting = {id(item.job) for item in self.pending}
        progress = BatchProgress(total=len(self.jobs))
        for job in self.jobs:
            if job.status == JobStatus.QUEUED or (id(job) in waiting and not job.is_terminal):
                progress.queued += 1
            elif job.status in (JobStatus.SUBMITTED, JobStatus.POLLING):
                progress.in_flight += 1
            elif job.status == JobStatus.COMPLETED:
                progress.completed += 1
            elif job.status == JobStatus.FAILED:
                progress.failed += 1
            else:
                progress.cancelled += 1
        return progress

    @property
    def is_finished(self) -> bool:
        return self._done.is_set()

    @property
    def total_cost(self) -> Decimal:
        """Estimated spend of completed jobs."""
        return sum(
            (job.estimated_cost for job in self.jobs if job.status == JobStatus.COMPLETED),
            Decimal("0"),
        )

    def job_for_shot(self, shot_id: str) -> Optional[GenerationJob]:
        for job in self.jobs:
            if job.shot_id == shot_id:
                return job
        return None

    def results(self) -> Dict[str, str]:
        """Asset URL per completed shot."""
        return {
            job.shot_id: job.result_asset_url
            for job in self.jobs
            if job.status == JobStatus.COMPLETED and job.result_asset_url
        }

    def failures(self) -> List[GenerationJob]:
        return [job for job in self.jobs if job.status in (JobStatus.FAILED, JobStatus.CANCELLED)]

    def cancel(self) -> None:
        """Cancel every job that has not finished yet."""
        if self._canceller is not None and not self.is_finished:
            self._canceller(self)

    async def wait(self) -> "BatchRun":
        await self._done.wait()
        return self

    def notify(self) -> None:
        """Push a progress snapshot to the subscriber, if any."""
        if self.on_progress is None:
            return
        try:
            result = self.on_progress(self.get_progress())
            if inspect.isawaitable(result):
                asyncio.ensure_future(result)
        except Exception as e:
            logger.warning(f"Progress subscriber failed for batch {self.id}: {e}")

    def check_finished(self) -> bool:
        if not self.is_finished and not self.pending and not self.running and all(
            job.is_terminal for job in self.jobs
        ):
            self._done.set()
        return self.is_finished
