"""FastAPI dependencies shared by the routers; tests override both."""
from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncSession

from storefront.app.core.database import async_session
from storefront.app.services.cache import CacheService


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    async with async_session() as session:
        yield session


async def get_cache() -> AsyncGenerator[CacheService, None]:
    yield CacheService(await CacheService.get_redis())
