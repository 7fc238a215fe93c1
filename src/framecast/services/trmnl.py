"""TRMNL device sync — pushes an image to each of a user's device webhooks."""

from __future__ import annotations

import asyncio
import logging

import httpx
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from framecast.config import get_settings
from framecast.core.errors import DeviceSyncError
from framecast.db.session import get_session_factory
from framecast.models.device import UserDevice
from framecast.services.base import DeviceNotifier

logger = logging.getLogger(__name__)


class TrmnlNotifier(DeviceNotifier):
    """Posts ``merge_variables`` to ``<webhook_base>/<webhook_uuid>`` for every device."""

    def __init__(
        self,
        webhook_base: str | None = None,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.webhook_base = (webhook_base or get_settings().trmnl_webhook_base).rstrip("/")
        self._session_factory = session_factory
        self._transport = transport

    def _factory(self) -> async_sessionmaker[AsyncSession]:
        if self._session_factory is None:
            self._session_factory = get_session_factory()
        return self._session_factory

    async def _webhooks(self, owner_id: str) -> list[str]:
        async with self._factory()() as session:
            result = await session.execute(
                select(UserDevice.webhook_uuid).where(
                    UserDevice.user_id == owner_id,
                    UserDevice.webhook_uuid.is_not(None),
                )
            )
            return [uuid for uuid in result.scalars().all() if uuid]

    async def notify(self, image_url: str, caption: str, owner_id: str) -> None:
        webhooks = await self._webhooks(owner_id)
        if not webhooks:
            logger.warning("No devices with webhook URLs to sync to user=%s", owner_id)
            return

        payload = {"merge_variables": {"image_url": image_url, "prompt": caption}}
        async with httpx.AsyncClient(timeout=30.0, transport=self._transport) as client:
            results = await asyncio.gather(
                *(client.post(f"{self.webhook_base}/{uuid}", json=payload) for uuid in webhooks),
                return_exceptions=True,
            )

        failures = [
            str(r) if isinstance(r, Exception) else f"HTTP {r.status_code}"
            for r in results
            if isinstance(r, Exception) or r.status_code >= 400
        ]
        if len(failures) == len(webhooks):
            raise DeviceSyncError(f"All device webhooks failed: {'; '.join(failures)}")
        if failures:
            logger.warning(
                "Device sync partially failed user=%s failures=%s", owner_id, failures
            )
        logger.info("Synced image to %d device(s) user=%s", len(webhooks) - len(failures), owner_id)
