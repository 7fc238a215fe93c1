"""Generate -> persist -> permanent URL, shared by scheduled jobs and batch items."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from framecast.core.presets import apply_style_preset
from framecast.services.base import ArtifactStore, ImageGenerator

logger = logging.getLogger(__name__)

DEFAULT_SIZE = "1024x1024"


@dataclass(frozen=True)
class Artifact:
    id: str
    url: str


class GenerationPipeline:
    """Runs one prompt through the generator and the gallery store.

    Any collaborator exception propagates to the caller, which records it on
    the job or batch item.
    """

    def __init__(
        self,
        generator: ImageGenerator,
        artifacts: ArtifactStore,
        *,
        model: str = "dall-e-3",
        quality: str = "standard",
    ) -> None:
        self.generator = generator
        self.artifacts = artifacts
        self.model = model
        self.quality = quality

    async def run(
        self,
        *,
        owner_id: str,
        prompt: str,
        size: str | None,
        style_preset: str | None,
        source: str,
    ) -> Artifact:
        size = size or DEFAULT_SIZE
        styled = apply_style_preset(prompt, style_preset)
        image = await self.generator.generate(
            styled, model=self.model, size=size, quality=self.quality
        )
        artifact_id = await self.artifacts.create_record(
            owner_id=owner_id,
            source_url=image.url,
            prompt=prompt,
            revised_prompt=image.revised_prompt,
            model=self.model,
            size=size,
            style_preset=style_preset,
            source=source,
        )
        await self.artifacts.persist(image.url, owner_id, artifact_id)
        # The provider URL expires; point the record at our copy
        url = self.artifacts.permanent_url_for(artifact_id)
        await self.artifacts.set_url(artifact_id, url)
        logger.info("Image saved to gallery owner=%s artifact=%s", owner_id, artifact_id)
        return Artifact(id=artifact_id, url=url)
