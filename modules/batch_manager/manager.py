"""
Batch manager.

Admits generation jobs into per-provider slots, runs each admitted job on a
JobRunner and releases the slot when the job ends. Admission and completion
are plain callbacks on the event loop, so the ledger needs no lock.

Admission is greedy and non-starving: pending jobs are scanned in submission
order and every job whose provider has headroom starts, even if an earlier
job is still waiting on a saturated provider.

Finished batches move to a bounded history so status queries keep working
for recent runs while the live set only holds batches with work left.
"""
import asyncio
import time
from collections import OrderedDict
from decimal import Decimal
from typing import Callable, Dict, Iterable, List, Optional
from uuid import uuid4

from shared.config import settings
from shared.errors import (
    BudgetExceededError,
    CapabilityError,
    ConfigError,
    PipelineError,
    error_kind,
)
from shared.logging import get_logger, set_job_id
from shared.models.generation import (
    GenerationJob,
    GenerationRequest,
    ProviderProfile,
)
from shared.retry import RetryOptions
from modules.analytics import MetricsRecorder
from modules.video_generator.config import get_profile
from modules.video_generator.cost_estimator import estimate_batch_cost, estimate_job_cost
from modules.video_generator.generator import JobRunner
from modules.video_generator.registry import ProviderRegistry
from modules.video_generator.selector import select_fallback, select_provider

from .batch import BatchRun, ProgressCallback, WorkItem
from .cache import JobResultCache
from .ledger import ConcurrencyLedger

logger = get_logger("batch_manager.manager")

RunnerFactory = Callable[..., JobRunner]


class BatchManager:
    """Runs batches of generation requests against a provider registry."""

    def __init__(
        self,
        registry: ProviderRegistry,
        global_cap: Optional[int] = None,
        retry_options: Optional[RetryOptions] = None,
        cache: Optional[JobResultCache] = None,
        runner_factory: RunnerFactory = JobRunner,
        metrics: Optional[MetricsRecorder] = None,
        history_size: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.registry = registry
        self.retry_options = retry_options or RetryOptions.from_settings("generation")
        self.cache = cache if cache is not None else JobResultCache()
        self.runner_factory = runner_factory
        self.metrics = metrics if metrics is not None else MetricsRecorder()
        self.history_size = history_size or settings.batch_history_size
        self.clock = clock
        self.ledger = ConcurrencyLedger(
            global_cap or settings.batch_global_concurrency,
            {p.id: p.max_concurrent_jobs for p in registry.profiles},
        )
        self._batches: Dict[str, BatchRun] = {}
        self._history: "OrderedDict[str, BatchRun]" = OrderedDict()

    def get_batch(self, batch_id: str) -> Optional[BatchRun]:
        """Live batch, or a recently finished one still in the history."""
        return self._batches.get(batch_id) or self._history.get(batch_id)

    @property
    def active_batches(self) -> List[BatchRun]:
        return list(self._batches.values())

    async def run_batch(
        self,
        requests: Iterable[GenerationRequest],
        profiles: Optional[List[ProviderProfile]] = None,
        *,
        batch_id: Optional[str] = None,
        budget_usd: Optional[Decimal] = None,
        retry_failed: bool = False,
        on_progress: Optional[ProgressCallback] = None,
    ) -> BatchRun:
        """Submit a batch and wait until every job is terminal."""
        run = self.start_batch(
            requests,
            profiles,
            batch_id=batch_id,
            budget_usd=budget_usd,
            retry_failed=retry_failed,
            on_progress=on_progress,
        )
        try:
            await run.wait()
        except asyncio.CancelledError:
            run.cancel()
            raise
        return run

    def start_batch(
        self,
        requests: Iterable[GenerationRequest],
        profiles: Optional[List[ProviderProfile]] = None,
        *,
        batch_id: Optional[str] = None,
        budget_usd: Optional[Decimal] = None,
        retry_failed: bool = False,
        on_progress: Optional[ProgressCallback] = None,
    ) -> BatchRun:
        """
        Create a BatchRun and admit what fits right away.

        Must be called from a running event loop. Requests whose identical
        job already finished are answered from the cache (failed ones are
        retried when ``retry_failed`` is set).
        """
        profiles = list(profiles) if profiles is not None else self.registry.profiles
        for profile in profiles:
            if profile.id not in self.registry:
                raise PipelineError(f"Profile {profile.id} has no registered adapter", provider_id=profile.id)
            self.ledger.set_cap(profile.id, profile.max_concurrent_jobs)

        batch_id = batch_id or str(uuid4())
        run = BatchRun(batch_id, [], profiles, budget_usd=budget_usd, on_progress=on_progress)
        run._canceller = self._cancel_batch

        for index, request in enumerate(requests):
            cached = self.cache.get(request.idempotency_key, retry_failed=retry_failed)
            if cached is not None:
                logger.info(
                    f"Reusing {cached.status.value} job for shot {request.shot_id}",
                    extra={"batch_id": batch_id, "job_id": str(cached.id)}
                )
                run.jobs.append(cached)
                continue

            try:
                profile = select_provider(request, profiles)
            except PipelineError as e:
                job = GenerationJob(request=request, provider_id=request.provider_hint or "")
                job.fail(e.kind, e.message)
                logger.warning(
                    f"No provider for shot {request.shot_id}: {e.message}",
                    extra={"batch_id": batch_id, "job_id": str(job.id)}
                )
                run.jobs.append(job)
                continue

            job = GenerationJob(
                request=request,
                provider_id=profile.id,
                estimated_cost=estimate_job_cost(profile, request),
            )
            run.jobs.append(job)
            run.enqueue(WorkItem(index, job, profile.id))

        run.estimated_cost = estimate_batch_cost(
            (self._profile(run, item.provider_id), item.job.request) for item in run.pending
        )
        self._batches[batch_id] = run
        logger.info(
            f"Batch {batch_id} started with {len(run.jobs)} jobs",
            extra={"batch_id": batch_id, "queued": len(run.pending), "estimated_cost": str(run.estimated_cost)}
        )
        self._admit()
        run.notify()
        self._finish_if_done(run)
        return run

    def _profile(self, run: BatchRun, provider_id: str) -> ProviderProfile:
        try:
            return get_profile(run.profiles, provider_id)
        except ConfigError:
            return self.registry.profile(provider_id)

    def _admit(self) -> None:
        """Start every pending job whose provider has a free slot."""
        for run in self.active_batches:
            if run.cancel_requested:
                continue
            admitted = False
            for item in list(run.pending):
                if not self.ledger.has_headroom(item.provider_id):
                    continue
                run.pending.remove(item)
                if not self._within_budget(run, item):
                    admitted = True
                    continue
                self.ledger.acquire(item.provider_id)
                item.job.provider_id = item.provider_id
                item.started_at = self.clock()
                item.attempts_at_start = item.job.attempts
                task = asyncio.ensure_future(self._drive(run, item))
                run.running[task] = item
                task.add_done_callback(lambda t, run=run: self._on_done(run, t))
                admitted = True
            if admitted:
                run.notify()
                self._finish_if_done(run)

    def _within_budget(self, run: BatchRun, item: WorkItem) -> bool:
        cost = estimate_job_cost(self._profile(run, item.provider_id), item.job.request)
        if run.budget_usd is not None and run.committed_cost + cost > run.budget_usd:
            error = BudgetExceededError(
                f"Estimated cost {cost} would exceed batch budget {run.budget_usd} "
                f"({run.committed_cost} committed)",
                job_id=item.job.id,
                provider_id=item.provider_id,
            )
            item.job.fail(error.kind, error.message)
            logger.warning(error.message, extra={"batch_id": run.id, "job_id": str(item.job.id)})
            return False
        run.committed_cost += cost
        item.job.estimated_cost = cost
        return True

    async def _drive(self, run: BatchRun, item: WorkItem) -> str:
        set_job_id(item.job.id)
        provider = self.registry.get(item.provider_id)
        runner = self.runner_factory(
            item.job,
            provider,
            retry_options=self.retry_options,
            on_status=lambda _job: run.notify(),
        )
        return await runner.run()

    def _on_done(self, run: BatchRun, task: asyncio.Task) -> None:
        item = run.running.pop(task)
        self.ledger.release(item.provider_id)
        job = item.job

        if task.cancelled():
            job.mark_cancelled()
            logger.info(f"Job for shot {job.shot_id} cancelled", extra={"batch_id": run.id, "job_id": str(job.id)})
        else:
            exc = task.exception()
            self._record_metric(item, exc)
            if exc is None:
                job.complete(task.result())
                logger.info(
                    f"Job for shot {job.shot_id} completed on {item.provider_id}",
                    extra={"batch_id": run.id, "job_id": str(job.id), "attempts": job.attempts}
                )
            elif not self._try_fallback(run, item, exc):
                job.fail(error_kind(exc), str(exc))
                details = exc.to_dict() if isinstance(exc, PipelineError) else {"error": type(exc).__name__}
                logger.error(
                    f"Job for shot {job.shot_id} failed on {item.provider_id}: {exc}",
                    exc_info=not isinstance(exc, PipelineError),
                    extra={"batch_id": run.id, "job_id": str(job.id), **{f"error_{k}": v for k, v in details.items()}}
                )

        if job.is_terminal:
            self.cache.put(job)
        run.notify()
        self._admit()
        self._finish_if_done(run)

    def _record_metric(self, item: WorkItem, exc: Optional[BaseException]) -> None:
        started = item.started_at if item.started_at is not None else self.clock()
        self.metrics.record(
            item.job,
            item.provider_id,
            duration_seconds=self.clock() - started,
            attempts=item.job.attempts - item.attempts_at_start,
            error_kind=error_kind(exc) if exc is not None else None,
        )

    def _try_fallback(self, run: BatchRun, item: WorkItem, exc: BaseException) -> bool:
        """Re-queue a capability failure once on the next-cheapest provider."""
        job = item.job
        if not isinstance(exc, CapabilityError) or job.fallback_provider_id or run.cancel_requested:
            return False
        fallback = select_fallback(job.request, run.profiles, exclude=item.provider_id)
        if fallback is None:
            return False
        job.fallback_provider_id = fallback.id
        logger.warning(
            f"{item.provider_id} cannot serve shot {job.shot_id} ({exc}), falling back to {fallback.id}",
            extra={"batch_id": run.id, "job_id": str(job.id)}
        )
        run.enqueue(WorkItem(item.index, job, fallback.id))
        return True

    def _cancel_batch(self, run: BatchRun) -> None:
        run.cancel_requested = True
        for item in run.pending:
            item.job.mark_cancelled()
        run.pending.clear()
        for task in list(run.running):
            task.cancel()
        logger.info(f"Batch {run.id} cancelled", extra={"batch_id": run.id, "in_flight": len(run.running)})
        run.notify()
        self._finish_if_done(run)

    def _finish_if_done(self, run: BatchRun) -> None:
        if run.is_finished or not run.check_finished():
            return
        progress = run.get_progress()
        logger.info(
            f"Batch {run.id} finished",
            extra={
                "batch_id": run.id,
                "completed": progress.completed,
                "failed": progress.failed,
                "cancelled": progress.cancelled,
                "total_cost": str(run.total_cost),
            }
        )
        self._archive(run)

    def _archive(self, run: BatchRun) -> None:
        """Move a finished batch into the bounded history."""
        self._batches.pop(run.id, None)
        self._history[run.id] = run
        self._history.move_to_end(run.id)
        while len(self._history) > self.history_size:
            evicted, _ = self._history.popitem(last=False)
            logger.debug(f"Evicted finished batch {evicted} from history", extra={"batch_id": evicted})
