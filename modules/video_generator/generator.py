"""
Per-job generation driver.

Explicit state machine for one job on one provider:
queued -> submitted -> polling -> completed, suspending on "awaiting next
poll" between status checks. Every submit/poll/fetch call goes through the
retry executor. The poll loop has a wall-clock budget; the first overrun
resubmits once, the second is fatal.
"""
import asyncio
import time
from typing import Awaitable, Callable, Optional

from shared.config import settings
from shared.errors import (
    GenerationError,
    GenerationTimeoutError,
    RetryableError,
    RetryExhaustedError,
)
from shared.logging import get_logger
from shared.models.generation import GenerationJob, JobStatus, ProviderProfile
from shared.retry import RetryOptions, compute_delay, execute
from modules.prompt_optimizer import ProviderPrompt, ShotDescription, optimize, score

from .config import poll_budget_seconds
from .providers import JobHandle, VideoProvider

logger = get_logger("video_generator.generator")

StatusCallback = Callable[[GenerationJob], None]


class JobRunner:
    """Drives one GenerationJob through one provider."""

    def __init__(
        self,
        job: GenerationJob,
        provider: VideoProvider,
        retry_options: Optional[RetryOptions] = None,
        poll_interval: Optional[float] = None,
        poll_budget: Optional[float] = None,
        on_status: Optional[StatusCallback] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.job = job
        self.provider = provider
        self.profile: ProviderProfile = provider.profile
        self.retry_options = retry_options or RetryOptions.from_settings()
        self.poll_interval = settings.poll_interval_seconds if poll_interval is None else poll_interval
        self.poll_budget = poll_budget_seconds(self.profile) if poll_budget is None else poll_budget
        self.on_status = on_status
        self.clock = clock
        self.sleep = sleep

    def _options(self, step: str) -> RetryOptions:
        return RetryOptions(
            max_attempts=self.retry_options.max_attempts,
            base_delay=self.retry_options.base_delay,
            max_delay=self.retry_options.max_delay,
            jitter=self.retry_options.jitter,
            retryable_exceptions=self.retry_options.retryable_exceptions,
            operation_name=f"{self.profile.id}.{step}",
        )

    def _advance(self, status: JobStatus) -> None:
        if self.job.advance(status) and self.on_status:
            self.on_status(self.job)

    def prepare_prompt(self) -> ProviderPrompt:
        """Optimize and score the prompt; the score is advisory only."""
        prompt = optimize(ShotDescription.from_request(self.job.request), self.profile)
        quality = score(prompt, self.profile)
        self.job.prompt_score = quality.overall
        logger.info(
            f"Prompt for shot {self.job.shot_id} on {self.profile.id} scored {quality.overall} ({quality.grade})",
            extra={
                "job_id": str(self.job.id),
                "provider_id": self.profile.id,
                "prompt_length": prompt.length,
                "truncated": prompt.truncated,
                "warnings": ",".join(quality.warnings),
            }
        )
        return prompt

    async def run(self) -> str:
        """
        Generate the clip and return its asset URL.

        Raises:
            CapabilityError: Provider cannot serve this request (caller may fall back)
            RetryExhaustedError: Transient failures outlasted the retry budget
            GenerationError: Permanent failure, including a second poll timeout
        """
        prompt = self.prepare_prompt()
        timeouts = 0
        remote_failures = 0

        while True:
            try:
                url = await self._attempt(prompt)
                self.job.complete(url)
                if self.on_status:
                    self.on_status(self.job)
                return url
            except GenerationTimeoutError as e:
                timeouts += 1
                if timeouts > 1:
                    raise GenerationError(
                        f"Generation timed out twice after {self.poll_budget:.0f}s on {self.profile.id}",
                        job_id=self.job.id,
                        provider_id=self.profile.id,
                    ) from e
                logger.warning(
                    f"Poll budget exceeded for shot {self.job.shot_id}, resubmitting once",
                    extra={"job_id": str(self.job.id), "provider_id": self.profile.id}
                )
            except RetryableError as e:
                # The remote job itself failed transiently: resubmit with backoff
                remote_failures += 1
                if remote_failures >= self.retry_options.max_attempts:
                    raise RetryExhaustedError(
                        e, remote_failures, job_id=self.job.id, provider_id=self.profile.id
                    ) from e
                delay = compute_delay(remote_failures - 1, self.retry_options, e)
                logger.warning(
                    f"Remote generation failed transiently, resubmitting in {delay:.2f}s",
                    extra={"job_id": str(self.job.id), "provider_id": self.profile.id, "error": str(e)}
                )
                await self.sleep(delay)

    async def _attempt(self, prompt: ProviderPrompt) -> str:
        request = self.job.request
        handle = await execute(lambda: self.provider.submit(request, prompt), self._options("submit"))
        self.job.attempts += 1
        self._advance(JobStatus.SUBMITTED)
        try:
            return await self._poll_until_done(handle)
        except (asyncio.CancelledError, GenerationTimeoutError, RetryExhaustedError):
            await self.cancel_remote(handle)
            raise

    async def _poll_until_done(self, handle: JobHandle) -> str:
        deadline = self.clock() + self.poll_budget
        while True:
            status = await execute(lambda: self.provider.poll_status(handle), self._options("poll"))
            if status.status == JobStatus.POLLING:
                self._advance(JobStatus.POLLING)
            elif status.status == JobStatus.COMPLETED:
                self._advance(JobStatus.POLLING)
                return await execute(lambda: self.provider.fetch_result(handle), self._options("fetch"))
            elif status.status == JobStatus.FAILED:
                error = status.error or GenerationError("Provider reported failure")
                error.job_id = self.job.id
                error.provider_id = self.profile.id
                raise error
            elif status.status == JobStatus.CANCELLED:
                raise GenerationError(
                    f"Generation {handle.remote_id} was cancelled by {self.profile.id}",
                    job_id=self.job.id,
                    provider_id=self.profile.id,
                )

            remaining = deadline - self.clock()
            if remaining <= 0:
                raise GenerationTimeoutError(
                    f"No result after {self.poll_budget:.0f}s",
                    job_id=self.job.id,
                    provider_id=self.profile.id,
                )
            # Awaiting next poll
            await self.sleep(min(self.poll_interval, remaining))

    async def cancel_remote(self, handle: JobHandle) -> None:
        """Best-effort remote cancel; failures are logged, never raised."""
        try:
            await self.provider.cancel(handle)
        except Exception as e:
            logger.warning(
                f"Failed to cancel {handle.remote_id} on {self.profile.id}: {e}",
                extra={"job_id": str(self.job.id), "provider_id": self.profile.id}
            )
