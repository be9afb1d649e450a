"""
Terminal job cache.

Resubmitting a request whose job already finished returns that job instead
of generating again. The cache holds at most ``max_entries`` jobs and evicts
the least recently used one beyond that.
"""
from collections import OrderedDict
from typing import Optional

from shared.config import settings
from shared.models.generation import GenerationJob, JobStatus


class JobResultCache:
    """Finished jobs keyed by request idempotency key."""

    def __init__(self, max_entries: Optional[int] = None):
        self.max_entries = max_entries or settings.job_cache_size
        self._jobs: "OrderedDict[str, GenerationJob]" = OrderedDict()

    def get(self, key: str, retry_failed: bool = False) -> Optional[GenerationJob]:
        job = self._jobs.get(key)
        if job is None:
            return None
        if retry_failed and job.status == JobStatus.FAILED:
            return None
        self._jobs.move_to_end(key)
        return job

    def put(self, job: GenerationJob) -> None:
        # Cancelled jobs never produced a result worth reusing
        if job.status not in (JobStatus.COMPLETED, JobStatus.FAILED):
            return
        key = job.request.idempotency_key
        self._jobs[key] = job
        self._jobs.move_to_end(key)
        while len(self._jobs) > self.max_entries:
            self._jobs.popitem(last=False)

    def __len__(self) -> int:
        return len(self._jobs)
