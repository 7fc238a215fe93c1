"""Gallery storage — downloads generated images and records them in the DB."""

from __future__ import annotations

import logging
from pathlib import Path

import httpx
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from framecast.config import get_settings
from framecast.core.errors import ArtifactStoreError
from framecast.db.session import get_session_factory
from framecast.models.image import GeneratedImage
from framecast.services.base import ArtifactStore

logger = logging.getLogger(__name__)


class GalleryStore(ArtifactStore):
    """Stores images at ``<gallery_dir>/<owner_id>/<artifact_id>.png``."""

    def __init__(
        self,
        gallery_dir: str | Path | None = None,
        public_base_url: str | None = None,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        settings = get_settings()
        self.gallery_dir = Path(gallery_dir or settings.gallery_dir)
        self.public_base_url = (public_base_url or settings.public_base_url).rstrip("/")
        self._session_factory = session_factory
        self._transport = transport

    def _factory(self) -> async_sessionmaker[AsyncSession]:
        if self._session_factory is None:
            self._session_factory = get_session_factory()
        return self._session_factory

    def path_for(self, owner_id: str, artifact_id: str) -> Path:
        return self.gallery_dir / owner_id / f"{artifact_id}.png"

    def permanent_url_for(self, artifact_id: str) -> str:
        return f"{self.public_base_url}/api/v1/gallery/image/{artifact_id}"

    async def create_record(
        self,
        *,
        owner_id: str,
        source_url: str,
        prompt: str,
        revised_prompt: str | None,
        model: str,
        size: str,
        style_preset: str | None,
        source: str,
    ) -> str:
        async with self._factory()() as session:
            record = GeneratedImage(
                user_id=owner_id,
                image_url=source_url,
                prompt=prompt,
                revised_prompt=revised_prompt,
                model=model,
                size=size,
                style_preset=style_preset,
                source=source,
            )
            session.add(record)
            await session.flush()
            artifact_id = record.id
            await session.commit()
        return artifact_id

    async def persist(self, source_url: str, owner_id: str, artifact_id: str) -> Path:
        logger.info("Saving image to gallery user=%s image=%s", owner_id, artifact_id)
        try:
            async with httpx.AsyncClient(timeout=60.0, transport=self._transport) as client:
                resp = await client.get(source_url)
                resp.raise_for_status()
        except httpx.HTTPError as exc:
            raise ArtifactStoreError(f"Failed to download image: {exc}") from exc

        path = self.path_for(owner_id, artifact_id)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(resp.content)
        except OSError as exc:
            raise ArtifactStoreError(f"Failed to write image: {exc}") from exc
        logger.info("Gallery image saved path=%s size=%d", path, len(resp.content))
        return path

    async def set_url(self, artifact_id: str, url: str) -> None:
        async with self._factory()() as session:
            await session.execute(
                update(GeneratedImage).where(GeneratedImage.id == artifact_id).values(image_url=url)
            )
            await session.commit()
