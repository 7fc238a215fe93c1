"""OpenAI image generation over httpx."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from framecast.config import get_settings
from framecast.core.errors import GenerationError
from framecast.services.base import GeneratedImage, ImageGenerator

logger = logging.getLogger(__name__)


class OpenAIImageGenerator(ImageGenerator):
    """Calls ``POST /images/generations`` and returns the first image URL."""

    def __init__(
        self,
        api_key: str | None = None,
        api_base: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        settings = get_settings()
        self.api_key = api_key or settings.openai_api_key
        self.api_base = (api_base or settings.openai_api_base).rstrip("/")
        self.timeout = timeout or settings.image_request_timeout
        self._transport = transport

    async def generate(
        self, prompt: str, *, model: str, size: str, quality: str
    ) -> GeneratedImage:
        if not self.api_key:
            raise GenerationError("OPENAI_API_KEY not configured")

        logger.info("Generating image model=%s size=%s quality=%s", model, size, quality)
        payload: dict[str, Any] = {
            "prompt": prompt,
            "model": model,
            "n": 1,
            "size": size,
            "quality": quality,
            "response_format": "url",
        }
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self._transport
            ) as client:
                resp = await client.post(
                    f"{self.api_base}/images/generations",
                    json=payload,
                    headers={"Authorization": f"Bearer {self.api_key}"},
                )
        except httpx.HTTPError as exc:
            raise GenerationError(f"Image generation request failed: {exc}") from exc

        if resp.status_code >= 400:
            message = _error_message(resp) or f"HTTP {resp.status_code}"
            logger.error("OpenAI API error: %s", message)
            raise GenerationError(message)

        data = resp.json().get("data") or []
        if not data or not data[0].get("url"):
            raise GenerationError("No image URL in response")
        return GeneratedImage(url=data[0]["url"], revised_prompt=data[0].get("revised_prompt"))


def _error_message(resp: httpx.Response) -> str | None:
    try:
        body = resp.json()
    except ValueError:
        return None
    error = body.get("error") if isinstance(body, dict) else None
    if isinstance(error, dict):
        return error.get("message")
    return None
