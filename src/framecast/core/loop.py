"""Framecast daemon — runs the recurring scheduler and the batch processor."""

from __future__ import annotations

import asyncio
import signal
import time

import structlog

from framecast.config import Settings, get_settings
from framecast.core.batch import BatchProcessor
from framecast.core.pipeline import GenerationPipeline
from framecast.core.scheduler import RecurringJobScheduler
from framecast.core.store import SqlJobStore
from framecast.logging_setup import configure_logging
from framecast.services.auth import purge_expired_tokens
from framecast.services.gallery import GalleryStore
from framecast.services.openai_images import OpenAIImageGenerator
from framecast.services.trmnl import TrmnlNotifier

logger = structlog.get_logger(__name__)


def build_pipeline(settings: Settings) -> GenerationPipeline:
    return GenerationPipeline(
        OpenAIImageGenerator(),
        GalleryStore(),
        model=settings.image_model,
        quality=settings.image_quality,
    )


class FramecastDaemon:
    """
    The Framecast daemon.

    Assumes it is the only active instance: two daemons against the same
    database would both execute every due job.

    On startup:
      1. Verifies the database is reachable
      2. Starts the recurring job scheduler (60 s poll, hourly token purge)
      3. Starts the batch processor (5 s poll)
      4. Idles in a heartbeat loop until signalled
    """

    def __init__(self, settings: Settings | None = None) -> None:
        self.settings = settings or get_settings()
        store = SqlJobStore()
        pipeline = build_pipeline(self.settings)
        notifier = TrmnlNotifier()
        self.scheduler = RecurringJobScheduler(
            store,
            pipeline,
            notifier,
            purge_tokens=purge_expired_tokens,
            poll_seconds=self.settings.scheduler_poll_seconds,
            purge_seconds=self.settings.token_purge_seconds,
        )
        self.processor = BatchProcessor(
            store,
            pipeline,
            notifier,
            poll_seconds=self.settings.batch_poll_seconds,
            rate_limit_seconds=self.settings.batch_rate_limit_seconds,
            stagger_seconds=self.settings.device_sync_stagger_seconds,
            lease_seconds=self.settings.batch_item_lease_seconds,
            max_attempts=self.settings.batch_item_max_attempts,
        )
        self._running = False
        self._start_time: float = 0.0

    async def start(self) -> None:
        logger.info("Framecast is starting")
        self._start_time = time.monotonic()

        await self._verify_database()
        await self.scheduler.start()
        await self.processor.start()

        self._running = True
        logger.info("Framecast is online")

        try:
            await self._run_forever()
        finally:
            await self.shutdown()

    async def _run_forever(self) -> None:
        """Heartbeat loop; the work itself runs on the APScheduler jobs."""
        tick_interval = 10
        while self._running:
            logger.debug(
                "Heartbeat",
                uptime=round(self.uptime_seconds),
                pending_syncs=self.processor.pending_syncs,
            )
            await asyncio.sleep(tick_interval)

    async def _verify_database(self) -> None:
        try:
            from sqlalchemy import text

            from framecast.db.session import get_session_factory

            async with get_session_factory()() as session:
                await session.execute(text("SELECT 1"))
            logger.info("DB connection verified")
        except Exception as exc:
            logger.warning("DB connection check failed", error=str(exc))

    @property
    def uptime_seconds(self) -> float:
        if not self._start_time:
            return 0.0
        return time.monotonic() - self._start_time

    async def shutdown(self) -> None:
        logger.info("Framecast is shutting down")
        self._running = False
        self.scheduler.shutdown()
        self.processor.shutdown()
        from framecast.db.session import dispose_engine

        await dispose_engine()
        logger.info("Framecast offline")

    def handle_signal(self, sig: int) -> None:
        logger.info("Received signal, shutting down gracefully", signal=sig)
        self._running = False


async def run_daemon() -> None:
    settings = get_settings()
    configure_logging(settings.log_level, json=settings.app_env == "production")
    daemon = FramecastDaemon(settings)
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, lambda s=sig: daemon.handle_signal(s))
    await daemon.start()
