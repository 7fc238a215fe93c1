"""Collaborator interfaces consumed by the scheduler and batch processor."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True)
class GeneratedImage:
    """Result of one generation call. ``url`` is the provider's temporary URL."""

    url: str
    revised_prompt: str | None = None


class ImageGenerator(ABC):
    """Opaque async image-generation provider."""

    @abstractmethod
    async def generate(
        self, prompt: str, *, model: str, size: str, quality: str
    ) -> GeneratedImage:
        """Generate one image. Raises GenerationError on failure."""


class ArtifactStore(ABC):
    """Gallery storage for generated images."""

    @abstractmethod
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
        """Insert a gallery record and return its artifact id."""

    @abstractmethod
    async def persist(self, source_url: str, owner_id: str, artifact_id: str) -> Path:
        """Download ``source_url`` and store it under the artifact id."""

    @abstractmethod
    def permanent_url_for(self, artifact_id: str) -> str: ...

    @abstractmethod
    async def set_url(self, artifact_id: str, url: str) -> None:
        """Replace the stored (possibly expiring) URL with ``url``."""


class DeviceNotifier(ABC):
    """Pushes an image to the owner's display devices."""

    @abstractmethod
    async def notify(self, image_url: str, caption: str, owner_id: str) -> None:
        """Raises DeviceSyncError on failure."""
