"""
Shared pytest fixtures.

Factories for provider profiles, generation requests and a scripted fake
provider that records how many of its jobs are in flight at once.
"""

import asyncio
from decimal import Decimal
from typing import Dict, List, Optional

import pytest

from shared.errors import PipelineError
from shared.models.generation import GenerationRequest, JobStatus, ProviderProfile
from shared.retry import RetryOptions
from modules.video_generator.providers import JobHandle, ProviderStatus, VideoProvider


class FakeProvider(VideoProvider):
    """
    In-process provider.

    ``script`` maps shot id to a list of outcomes, one per submit (the last
    one repeats). ``"ok"`` completes, a PipelineError instance fails the remote job with
    that error, ``("submit", error)`` raises from submit. Jobs for shots
    listed in ``gates`` wait on the event before finishing.
    """

    def __init__(self, profile: ProviderProfile, script=None, delay: float = 0.0):
        super().__init__(profile)
        self.script: Dict[str, list] = {k: list(v) for k, v in (script or {}).items()}
        self.delay = delay
        self.gates: Dict[str, asyncio.Event] = {}
        self.in_flight: set = set()
        self.peak = 0
        self.submitted: List[str] = []
        self.cancelled: List[str] = []
        self._outcomes: Dict[str, object] = {}

    def gate(self, shot_id: str) -> asyncio.Event:
        return self.gates.setdefault(shot_id, asyncio.Event())

    async def submit(self, request, prompt) -> JobHandle:
        self.validate_request(request)
        outcomes = self.script.get(request.shot_id) or ["ok"]
        outcome = outcomes.pop(0) if len(outcomes) > 1 else outcomes[0]
        if isinstance(outcome, tuple) and outcome[0] == "submit":
            raise outcome[1]
        remote_id = f"{self.provider_id}-{request.shot_id}-{len(self.submitted)}"
        self.submitted.append(request.shot_id)
        self._outcomes[remote_id] = outcome
        self.in_flight.add(remote_id)
        self.peak = max(self.peak, len(self.in_flight))
        return JobHandle(provider_id=self.provider_id, remote_id=remote_id, data={"shot_id": request.shot_id})

    async def poll_status(self, handle: JobHandle) -> ProviderStatus:
        shot_id = handle.data["shot_id"]
        if shot_id in self.gates:
            await self.gates[shot_id].wait()
        else:
            await asyncio.sleep(self.delay)
        self.in_flight.discard(handle.remote_id)
        outcome = self._outcomes[handle.remote_id]
        if isinstance(outcome, PipelineError):
            return ProviderStatus(status=JobStatus.FAILED, error=outcome)
        return ProviderStatus(status=JobStatus.COMPLETED)

    async def fetch_result(self, handle: JobHandle) -> str:
        return f"https://cdn.test/{self.provider_id}/{handle.data['shot_id']}.mp4"

    async def cancel(self, handle: JobHandle) -> None:
        self.in_flight.discard(handle.remote_id)
        self.cancelled.append(handle.data["shot_id"])


@pytest.fixture
def fast_retry() -> RetryOptions:
    return RetryOptions(max_attempts=3, base_delay=0.0, max_delay=0.0, jitter=False)


@pytest.fixture
def make_profile():
    def factory(
        provider_id: str = "budget",
        cost: str = "0.02",
        cap: int = 2,
        max_duration: float = 10,
        resolutions: Optional[List[str]] = None,
        tier: str = "budget",
        **overrides,
    ) -> ProviderProfile:
        data = dict(
            id=provider_id,
            tier=tier,
            max_duration_seconds=max_duration,
            supported_resolutions=resolutions or ["720p"],
            max_concurrent_jobs=cap,
            cost_per_second=Decimal(cost),
            model=f"test/{provider_id}",
        )
        data.update(overrides)
        return ProviderProfile(**data)

    return factory


@pytest.fixture
def make_request():
    def factory(shot_id: str = "s1", duration: float = 5, **overrides) -> GenerationRequest:
        data = dict(
            shot_id=shot_id,
            source_image_ref=f"https://img.test/{shot_id}.png",
            target_duration_seconds=duration,
            motion_description=f"Shot {shot_id}: the hero turns slowly toward the window",
            camera_instruction="slow zoom in",
        )
        data.update(overrides)
        return GenerationRequest(**data)

    return factory


@pytest.fixture
def fake_provider():
    def factory(profile: ProviderProfile, script=None, delay: float = 0.0) -> FakeProvider:
        return FakeProvider(profile, script=script, delay=delay)

    return factory
