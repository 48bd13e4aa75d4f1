"""
Async PostgreSQL engine and the session factory used by `api.deps.get_session`.

Models import Base from core.base so they load without creating this engine.
"""
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from storefront.app.core.settings import get_settings

_settings = get_settings()

engine = create_async_engine(
    url=_settings.db_url,
    echo=_settings.DB_ECHO,
    pool_size=_settings.DB_POOL_SIZE,
    max_overflow=_settings.DB_MAX_OVERFLOW,
    pool_pre_ping=True,
    pool_recycle=_settings.DB_POOL_RECYCLE,
)
async_session = async_sessionmaker(engine, expire_on_commit=False)
