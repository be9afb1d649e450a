"""
Tests for the provider adapters.

HTTP backends run against httpx.MockTransport; the Replicate adapter gets a
mocked SDK client.
"""
import json

import httpx
import pytest
from unittest.mock import MagicMock

from shared.errors import (
    ConfigError,
    ContentPolicyError,
    GenerationError,
    QuotaExhaustedError,
    RateLimitError,
    RetryableError,
    UnsupportedRequestError,
    ValidationError,
)
from shared.models.generation import JobStatus
from modules.prompt_optimizer import ProviderPrompt
from modules.video_generator.config import get_profile, load_provider_profiles
from modules.video_generator.providers import (
    JobHandle,
    KlingProvider,
    ReplicateProvider,
    RunwayProvider,
    classify_failure,
)
from modules.video_generator.providers.replicate_provider import extract_output_url

PROFILES = load_provider_profiles()
PROMPT = ProviderPrompt(provider_id="x", text="A knight turns. Camera movement: slow zoom in.", negative_prompt="blurry")


class TestClassifyFailure:
    @pytest.mark.parametrize("message,expected", [
        ("429 Too Many Requests", RateLimitError),
        ("Request timed out", RetryableError),
        ("Internal error, please try again", RetryableError),
        ("NSFW content detected", ContentPolicyError),
        ("Invalid duration for this model", UnsupportedRequestError),
        ("Insufficient credit balance", QuotaExhaustedError),
        ("CUDA exploded", GenerationError),
    ])
    def test_vocabulary(self, message, expected):
        assert type(classify_failure(message, "p")) is expected


class TestKling:
    def make(self, handler):
        return KlingProvider(get_profile(PROFILES, "kling-2.6"), api_key="key", transport=httpx.MockTransport(handler))

    @pytest.mark.asyncio
    async def test_submit_poll_fetch(self, make_request):
        sent = {}

        def handler(request: httpx.Request) -> httpx.Response:
            if request.method == "POST":
                sent.update(json.loads(request.content))
                assert request.headers["authorization"] == "Bearer key"
                return httpx.Response(200, json={"code": 0, "data": {"task_id": "t-1"}})
            return httpx.Response(200, json={"code": 0, "data": {
                "task_status": "succeed",
                "task_result": {"videos": [{"url": "https://kling.test/v.mp4"}]},
            }})

        provider = self.make(handler)
        handle = await provider.submit(make_request(resolution="1080p", camera_instruction="slow zoom in"), PROMPT)
        status = await provider.poll_status(handle)
        url = await provider.fetch_result(handle)
        await provider.aclose()

        assert handle.remote_id == "t-1"
        assert sent["duration"] == "5"
        assert sent["mode"] == "pro"
        assert sent["camera_control"] == {"type": "forward_up"}
        assert sent["negative_prompt"] == "blurry"
        assert status.status == JobStatus.COMPLETED
        assert url == "https://kling.test/v.mp4"

    @pytest.mark.asyncio
    async def test_failed_task_is_classified(self, make_request):
        def handler(request):
            return httpx.Response(200, json={"code": 0, "data": {
                "task_status": "failed", "task_status_msg": "Content flagged by moderation",
            }})

        provider = self.make(handler)
        status = await provider.poll_status(JobHandle(provider_id="kling-2.6", remote_id="t-1"))

        assert status.status == JobStatus.FAILED
        assert isinstance(status.error, ContentPolicyError)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("code,expected", [
        (1002, ConfigError),
        (1102, QuotaExhaustedError),
        (1301, ContentPolicyError),
        (1303, RateLimitError),
        (1201, ValidationError),
        (5000, RetryableError),
    ])
    async def test_envelope_codes(self, code, expected, make_request):
        def handler(request):
            return httpx.Response(200, json={"code": code, "message": "nope"})

        provider = self.make(handler)
        with pytest.raises(expected):
            await provider.submit(make_request(resolution="1080p"), PROMPT)

    @pytest.mark.asyncio
    async def test_http_429_is_rate_limit(self, make_request):
        def handler(request):
            return httpx.Response(429, headers={"retry-after": "4"}, text="slow down")

        provider = self.make(handler)
        with pytest.raises(RateLimitError) as exc_info:
            await provider.submit(make_request(resolution="1080p"), PROMPT)
        assert exc_info.value.retry_after == 4.0

    @pytest.mark.asyncio
    async def test_rejects_unsupported_resolution_without_network(self, make_request):
        def handler(request):
            raise AssertionError("no request expected")

        provider = self.make(handler)
        with pytest.raises(UnsupportedRequestError):
            await provider.submit(make_request(resolution="480p"), PROMPT)

    def test_requires_api_key(self):
        from unittest.mock import patch
        with patch("modules.video_generator.providers.kling.settings") as mock_settings:
            mock_settings.kling_api_key = None
            with pytest.raises(ConfigError):
                KlingProvider(get_profile(PROFILES, "kling-2.6"))


class TestRunway:
    def make(self, handler):
        return RunwayProvider(
            get_profile(PROFILES, "runway-gen4-turbo"), api_key="key", transport=httpx.MockTransport(handler)
        )

    @pytest.mark.asyncio
    async def test_submit_and_poll(self, make_request):
        sent = {}

        def handler(request):
            if request.method == "POST":
                sent.update(json.loads(request.content))
                assert "x-runway-version" in request.headers
                return httpx.Response(200, json={"id": "rw-1"})
            return httpx.Response(200, json={"status": "SUCCEEDED", "output": ["https://runway.test/o.mp4"]})

        provider = self.make(handler)
        handle = await provider.submit(make_request(duration=7), PROMPT)
        status = await provider.poll_status(handle)

        assert sent["duration"] == 10
        assert sent["ratio"] == "1280:720"
        assert sent["promptText"] == PROMPT.text
        assert status.status == JobStatus.COMPLETED
        assert await provider.fetch_result(handle) == "https://runway.test/o.mp4"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("code,expected", [
        ("SAFETY.INPUT.TEXT", ContentPolicyError),
        ("INTERNAL.BAD_OUTPUT", RetryableError),
        ("ASSET.INVALID", ValidationError),
    ])
    async def test_failure_codes(self, code, expected):
        def handler(request):
            return httpx.Response(200, json={"status": "FAILED", "failureCode": code, "failure": "bad"})

        provider = self.make(handler)
        status = await provider.poll_status(JobHandle(provider_id="runway-gen4-turbo", remote_id="rw-1"))

        assert status.status == JobStatus.FAILED
        assert type(status.error) is expected

    @pytest.mark.asyncio
    async def test_cancel_deletes_task(self):
        calls = []

        def handler(request):
            calls.append((request.method, request.url.path))
            return httpx.Response(204)

        provider = self.make(handler)
        await provider.cancel(JobHandle(provider_id="runway-gen4-turbo", remote_id="rw-1"))

        assert calls == [("DELETE", "/v1/tasks/rw-1")]

    @pytest.mark.asyncio
    async def test_server_error_is_transient(self):
        provider = self.make(lambda request: httpx.Response(503, text="unavailable"))
        with pytest.raises(RetryableError):
            await provider.poll_status(JobHandle(provider_id="runway-gen4-turbo", remote_id="rw-1"))

    @pytest.mark.asyncio
    async def test_policy_message_in_4xx_is_capability(self, make_request):
        provider = self.make(lambda request: httpx.Response(400, text="Prompt flagged by content policy"))
        with pytest.raises(ContentPolicyError):
            await provider.submit(make_request(), PROMPT)


class TestReplicate:
    def make(self, client):
        return ReplicateProvider(get_profile(PROFILES, "veo-3.1-fast"), client=client)

    @pytest.mark.asyncio
    async def test_submit_maps_parameter_names(self, make_request):
        client = MagicMock()
        client.predictions.create.return_value = MagicMock(id="pred-1")
        provider = self.make(client)

        handle = await provider.submit(make_request(duration=5), PROMPT)

        assert handle.remote_id == "pred-1"
        kwargs = client.predictions.create.call_args.kwargs
        assert kwargs["model"] == "google/veo-3.1-fast"
        assert kwargs["input"]["duration"] == 6
        assert kwargs["input"]["negative_prompt"] == "blurry"
        assert kwargs["input"]["image"] == "https://img.test/s1.png"

    @pytest.mark.asyncio
    async def test_poll_and_fetch(self):
        client = MagicMock()
        client.predictions.get.return_value = MagicMock(status="succeeded", output="https://replicate.test/o.mp4")
        provider = self.make(client)
        handle = JobHandle(provider_id="veo-3.1-fast", remote_id="pred-1")

        status = await provider.poll_status(handle)

        assert status.status == JobStatus.COMPLETED
        assert await provider.fetch_result(handle) == "https://replicate.test/o.mp4"

    @pytest.mark.asyncio
    async def test_failed_prediction_is_classified(self):
        client = MagicMock()
        client.predictions.get.return_value = MagicMock(status="failed", error="Prediction timed out", output=None)
        provider = self.make(client)

        status = await provider.poll_status(JobHandle(provider_id="veo-3.1-fast", remote_id="pred-1"))

        assert status.status == JobStatus.FAILED
        assert isinstance(status.error, RetryableError)

    @pytest.mark.asyncio
    async def test_sdk_error_on_submit_is_classified(self, make_request):
        client = MagicMock()
        client.predictions.create.side_effect = RuntimeError("input flagged as sensitive")
        provider = self.make(client)

        with pytest.raises(ContentPolicyError):
            await provider.submit(make_request(), PROMPT)

    def test_extract_output_url(self):
        assert extract_output_url(["https://a.test/1.mp4", "https://a.test/2.mp4"]) == "https://a.test/1.mp4"
        assert extract_output_url(MagicMock(url="https://a.test/f.mp4")) == "https://a.test/f.mp4"
        assert extract_output_url([]) is None
