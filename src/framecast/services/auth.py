"""Session housekeeping — purges expired revoked and refresh tokens."""

from __future__ import annotations

import logging
from datetime import UTC, datetime

from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from framecast.db.session import get_session_factory
from framecast.models.token import RefreshToken, RevokedToken

logger = logging.getLogger(__name__)


async def purge_expired_tokens(
    session_factory: async_sessionmaker[AsyncSession] | None = None,
    now: datetime | None = None,
) -> int:
    """Delete expired token rows. Returns the number of rows removed."""
    now = now or datetime.now(UTC)
    factory = session_factory or get_session_factory()
    async with factory() as session:
        revoked = await session.execute(delete(RevokedToken).where(RevokedToken.expires_at < now))
        refresh = await session.execute(delete(RefreshToken).where(RefreshToken.expires_at < now))
        await session.commit()
    removed = (revoked.rowcount or 0) + (refresh.rowcount or 0)
    if removed:
        logger.info("Purged %d expired token(s)", removed)
    return removed
