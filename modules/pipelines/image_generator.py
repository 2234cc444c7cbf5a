"""Remote image generation service with rate-limit aware retries."""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional

import httpx

from config.settings import AppConfig
from modules.pipelines.errors import (
    UNREACHABLE_ERRORS,
    ConfigurationError,
    GenerationError,
    ProviderClientError,
    ProviderServerError,
    ProviderTransportError,
    RateLimitError,
    ResponseShapeError,
)
from modules.pipelines.fallback_renderer import FallbackRenderer
from modules.pipelines.response_shapes import (
    NORMALIZATION_STRATEGIES,
    ImageReference,
    find_image_reference,
)
from modules.utils.image_utils import write_artifact

logger = logging.getLogger(__name__)

SleepFn = Callable[[float], Awaitable[Any]]
JitterFn = Callable[[float, float], float]


@dataclass(slots=True)
class ImageRequest:
    """Request data for one remote generation call."""

    prompt: str
    model: str
    aspect_ratio: str = "16:9"

    def to_payload(self) -> dict[str, Any]:
        return {
            "model": self.model,
            "messages": [{"role": "user", "content": self.prompt}],
            "modalities": ["image", "text"],
            "image_config": {"aspect_ratio": self.aspect_ratio},
        }


@dataclass(slots=True)
class GenerationAttempt:
    """Retry bookkeeping for a single ``generate_image`` call."""

    attempt_number: int = 0
    last_error: Optional[GenerationError] = None


@dataclass(slots=True)
class ImageArtifact:
    """An image written to the images directory."""

    file_path: Path
    data: bytes
    format: str  # png or svg


def _response_detail(response: httpx.Response, limit: int = 200) -> str:
    return " ".join(response.text.split())[:limit]


class ImageGenerator:
    """Facade around an OpenRouter-style multimodal generation endpoint."""

    def __init__(
        self,
        config: AppConfig,
        client: Optional[httpx.AsyncClient] = None,
        fallback_renderer: Optional[FallbackRenderer] = None,
        fallback_to_local: Optional[bool] = None,
        sleep: SleepFn = asyncio.sleep,
        jitter: JitterFn = random.uniform,
    ) -> None:
        self.config = config
        self.images_dir = Path(config.images_dir)
        self.fallback_to_local = config.fallback_to_local if fallback_to_local is None else fallback_to_local
        self.fallback_renderer = fallback_renderer or FallbackRenderer(self.images_dir)
        self._client = client
        self._owns_client = client is None
        self._sleep = sleep
        self._jitter = jitter

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(self.config.request_timeout))
        return self._client

    async def aclose(self) -> None:
        """Close the HTTP client if this service created it."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def generate_image(self, prompt: str) -> Path:
        """Generate an image for ``prompt`` and return the absolute file path."""
        try:
            artifact = await self.generate_artifact(prompt)
        except UNREACHABLE_ERRORS as exc:
            if not self.fallback_to_local:
                logger.error("Image generation failed: %s", exc)
                raise
            logger.warning("Image provider unreachable (%s); rendering local fallback", exc)
            return await asyncio.to_thread(self.fallback_renderer.render_fallback, prompt)
        except GenerationError as exc:
            logger.error("Image generation failed: %s", exc)
            raise
        return artifact.file_path

    async def generate_artifact(self, prompt: str) -> ImageArtifact:
        """Call the provider, normalize its response and persist the bytes."""
        api_key = self._require_api_key()
        request = ImageRequest(
            prompt=prompt,
            model=self.config.image_model,
            aspect_ratio=self.config.image_aspect_ratio,
        )
        body = await self._post_with_retry(request, api_key)
        reference = find_image_reference(body)
        data = await self._resolve_reference(reference)

        path = await asyncio.to_thread(write_artifact, self.images_dir, "affirmation", ".png", data)
        logger.info("Image saved to %s (%d bytes, via %s)", path, len(data), reference.strategy)
        return ImageArtifact(file_path=path, data=data, format="png")

    # Internal helpers ---------------------------------------------------------
    def _require_api_key(self) -> str:
        if not self.config.openrouter_key:
            raise ConfigurationError("OPENROUTER_API_KEY is not configured")
        return self.config.openrouter_key

    def _headers(self, api_key: str) -> dict[str, str]:
        headers = {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }
        referer = self.config.metadata.get("http_referer")
        title = self.config.metadata.get("app_title")
        if referer:
            headers["HTTP-Referer"] = str(referer)
        if title:
            headers["X-Title"] = str(title)
        return headers

    def _backoff_delay(self, attempt_number: int) -> float:
        base = self.config.backoff_base * (2**attempt_number)
        return base + self._jitter(0.0, self.config.backoff_jitter)

    async def _post_with_retry(self, request: ImageRequest, api_key: str) -> Any:
        url = f"{self.config.api_base_url}/chat/completions"
        headers = self._headers(api_key)
        payload = request.to_payload()
        attempt = GenerationAttempt()
        max_attempts = max(1, self.config.max_attempts)

        while attempt.attempt_number < max_attempts:
            number = attempt.attempt_number
            is_last = number == max_attempts - 1
            attempt.attempt_number += 1

            try:
                response = await self.client.post(
                    url,
                    json=payload,
                    headers=headers,
                    timeout=self.config.request_timeout,
                )
            except httpx.TransportError as exc:
                attempt.last_error = ProviderTransportError(f"{type(exc).__name__}: {exc}")
                logger.warning(
                    "Image request attempt %d/%d failed: %s", number + 1, max_attempts, attempt.last_error
                )
                continue

            status = response.status_code
            if status == 429:
                attempt.last_error = RateLimitError(f"rate limited after {number + 1} attempt(s)")
                if not is_last:
                    delay = self._backoff_delay(number)
                    logger.warning(
                        "Image request rate limited (attempt %d/%d); retrying in %.2fs",
                        number + 1,
                        max_attempts,
                        delay,
                    )
                    await self._sleep(delay)
                continue
            if status >= 500:
                attempt.last_error = ProviderServerError(status, _response_detail(response))
                logger.warning(
                    "Image request attempt %d/%d failed: %s", number + 1, max_attempts, attempt.last_error
                )
                continue
            if not response.is_success:
                raise ProviderClientError(status, _response_detail(response))

            try:
                return response.json()
            except ValueError as exc:
                raise ResponseShapeError(
                    [name for name, _ in NORMALIZATION_STRATEGIES],
                    detail="response body is not valid JSON",
                ) from exc

        assert attempt.last_error is not None
        raise attempt.last_error

    async def _resolve_reference(self, reference: ImageReference) -> bytes:
        if reference.data is not None:
            return reference.data
        assert reference.url is not None
        return await self._fetch_url(reference)

    async def _fetch_url(self, reference: ImageReference) -> bytes:
        url = reference.url or ""
        try:
            response = await self.client.get(url, timeout=self.config.request_timeout)
        except httpx.TransportError as exc:
            raise ProviderTransportError(f"failed to download {url}: {exc}") from exc
        if response.status_code >= 500:
            raise ProviderServerError(response.status_code, f"downloading {url}")
        if not response.is_success:
            raise ProviderClientError(response.status_code, f"downloading {url}")
        if not response.content:
            raise ResponseShapeError([reference.strategy], detail=f"{url} returned an empty body")
        return response.content
