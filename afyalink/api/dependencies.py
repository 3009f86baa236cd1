from collections.abc import AsyncIterator

from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from afyalink.db.session import async_session
from afyalink.services.errors import UnavailableError


async def get_db() -> AsyncIterator[AsyncSession]:
    """One session per request; uncommitted work is rolled back on close."""
    async with async_session() as session:
        try:
            yield session
        except (OperationalError, InterfaceError, ConnectionRefusedError) as exc:
            raise UnavailableError("Database unavailable") from exc
