"""
Shared HTTP plumbing for providers reached over their REST APIs.
"""
from typing import Any, Dict, Optional

import httpx

from shared.config import settings
from shared.errors import CapabilityError, PipelineError, ValidationError
from shared.retry import classify_http_error
from shared.models.generation import ProviderProfile

from .base import VideoProvider, classify_failure


class HttpVideoProvider(VideoProvider):
    """Provider backed by an httpx.AsyncClient."""

    def __init__(
        self,
        profile: ProviderProfile,
        base_url: str,
        headers: Dict[str, str],
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(profile)
        self.http = httpx.AsyncClient(
            base_url=base_url,
            headers=headers,
            timeout=settings.provider_request_timeout,
            transport=transport,
        )

    def translate_http_error(self, error: httpx.HTTPError) -> PipelineError:
        translated = classify_http_error(error, provider_id=self.provider_id)
        if isinstance(translated, ValidationError) and isinstance(error, httpx.HTTPStatusError):
            # A 4xx body can still describe a capability problem (policy, unsupported input)
            by_message = classify_failure(error.response.text, self.provider_id)
            if isinstance(by_message, CapabilityError):
                return by_message
        return translated

    async def request_json(self, method: str, path: str, json: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Send a request and return the decoded body, translating failures."""
        try:
            response = await self.http.request(method, path, json=json)
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise self.translate_http_error(e) from e
        if not response.content:
            return {}
        return response.json()

    async def aclose(self) -> None:
        await self.http.aclose()
