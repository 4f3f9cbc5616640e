"""Async client for the Doubao Seedream image-generation API."""

from __future__ import annotations

import asyncio
import base64
import logging
import time
from dataclasses import dataclass
from typing import Any, Mapping

import httpx
from openai import APIConnectionError, APIStatusError, APITimeoutError, AsyncOpenAI, RateLimitError

from photobutler.config.settings import Settings, get_settings
from photobutler.tasks.errors import ProviderErrorKind

logger = logging.getLogger(__name__)

_TERMINAL_JOB_STATES = {"completed", "succeeded", "failed"}


@dataclass(slots=True)
class GenerationResult:
    """Outcome of a single provider call."""

    success: bool
    result_url: str | None = None
    error: str | None = None
    error_kind: ProviderErrorKind | None = None

    @classmethod
    def failed(cls, error: str, kind: ProviderErrorKind = ProviderErrorKind.GENERIC) -> GenerationResult:
        return cls(success=False, error=error, error_kind=kind)


def image_to_data_url(image_bytes: bytes) -> str:
    """Encode a reference image as a data URL accepted by the provider."""

    mime = "image/png" if image_bytes.startswith(b"\x89PNG") else "image/jpeg"
    return f"data:{mime};base64,{base64.b64encode(image_bytes).decode('ascii')}"


class ImageGeneratorClient:
    """Generates a styled image from a reference photo and a prompt.

    The provider either answers synchronously with an image URL or returns a
    job id that is polled until it settles. The whole call is bounded by
    ``request_timeout + max_wait`` seconds and is never retried here.
    """

    def __init__(self, settings: Settings | None = None, http_client: httpx.AsyncClient | None = None) -> None:
        settings = settings or get_settings()
        if not settings.provider_api_key:
            raise RuntimeError("Doubao API key is not configured.")

        self._settings = settings
        base_url = settings.provider_base_url.rstrip("/")
        self._client = AsyncOpenAI(
            api_key=settings.provider_api_key,
            base_url=base_url,
            timeout=settings.request_timeout,
            max_retries=0,
        )
        self._http = http_client or httpx.AsyncClient(
            base_url=base_url,
            timeout=settings.request_timeout,
            headers={"Authorization": f"Bearer {settings.provider_api_key}"},
        )

    async def generate(self, image_bytes: bytes, prompt: str) -> GenerationResult:
        """Return a result URL for the generated image or a failed result."""

        if not image_bytes:
            return GenerationResult.failed("Reference image is required")
        if not prompt or not prompt.strip():
            return GenerationResult.failed("Prompt is required")

        budget = self._settings.request_timeout + self._settings.max_wait
        try:
            return await asyncio.wait_for(self._generate(image_bytes, prompt.strip()), timeout=budget)
        except asyncio.TimeoutError:
            return GenerationResult.failed(f"Generation timed out after {budget:.0f}s", ProviderErrorKind.TIMEOUT)
        except RateLimitError as exc:
            return GenerationResult.failed(f"429 rate limited: {exc}", ProviderErrorKind.RATE_LIMIT)
        except APITimeoutError as exc:
            return GenerationResult.failed(f"Request timeout: {exc}", ProviderErrorKind.TIMEOUT)
        except APIConnectionError as exc:
            return GenerationResult.failed(f"Network error: {exc}", ProviderErrorKind.NETWORK)
        except APIStatusError as exc:
            return GenerationResult.failed(f"Provider returned {exc.status_code}: {exc.message}")
        except httpx.TimeoutException as exc:
            return GenerationResult.failed(f"Polling timeout: {exc}", ProviderErrorKind.TIMEOUT)
        except httpx.HTTPStatusError as exc:
            kind = ProviderErrorKind.RATE_LIMIT if exc.response.status_code == 429 else ProviderErrorKind.GENERIC
            return GenerationResult.failed(f"Polling returned {exc.response.status_code}", kind)
        except httpx.HTTPError as exc:
            return GenerationResult.failed(f"Network error while polling: {exc}", ProviderErrorKind.NETWORK)

    async def _generate(self, image_bytes: bytes, prompt: str) -> GenerationResult:
        logger.info("Sending request to the image generation API")
        result = await self._client.images.generate(
            model=self._settings.provider_image_model,
            prompt=prompt,
            size=self._settings.provider_image_size,  # type: ignore[arg-type]
            response_format="url",
            extra_body={"image": image_to_data_url(image_bytes), "watermark": False},
        )

        url = self._extract_url(result)
        if url:
            return GenerationResult(success=True, result_url=url)

        job_id = getattr(result, "task_id", None) or getattr(result, "id", None)
        if not job_id:
            return GenerationResult.failed("No image URL in API response")
        logger.info("Waiting for provider job %s", job_id)
        return await self._wait_for_job(str(job_id))

    async def _wait_for_job(self, job_id: str) -> GenerationResult:
        deadline = time.monotonic() + self._settings.max_wait
        while time.monotonic() < deadline:
            response = await self._http.get(f"/image/task/{job_id}")
            response.raise_for_status()
            payload = response.json() if response.content else {}
            data = payload.get("data") or {}
            status = str(data.get("status", "pending")).lower()
            if status in _TERMINAL_JOB_STATES:
                image_url = data.get("image_url")
                if status != "failed" and image_url:
                    return GenerationResult(success=True, result_url=image_url)
                return GenerationResult.failed(payload.get("message") or "Image generation failed")
            logger.debug("Provider job %s status: %s", job_id, status)
            await asyncio.sleep(self._settings.poll_interval)
        return GenerationResult.failed("Provider job timed out", ProviderErrorKind.TIMEOUT)

    @staticmethod
    def _extract_url(result: Any) -> str | None:
        data_attr = getattr(result, "data", None)
        if not isinstance(data_attr, list) or not data_attr:
            return None
        primary = data_attr[0]
        image_url = getattr(primary, "url", None)
        image_base64 = getattr(primary, "b64_json", None)
        if isinstance(primary, Mapping):
            image_url = image_url or primary.get("url")
            image_base64 = image_base64 or primary.get("b64_json")
        if image_url:
            return image_url
        if image_base64:
            return f"data:image/jpeg;base64,{image_base64}"
        return None

    async def ping(self) -> bool:
        """Return ``True`` when the service responds to a model listing call."""

        models = await self._client.models.list()
        return bool(models.data)

    async def close(self) -> None:
        """Close the underlying HTTP sessions."""

        await self._http.aclose()
        await self._client.close()
