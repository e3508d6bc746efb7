from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine

from ridenav.config import settings


def create_engine(url: str | None = None, **kwargs) -> AsyncEngine:
    return create_async_engine(url or settings.database_url, **kwargs)


def create_sessionmaker(engine: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(engine, expire_on_commit=False)
