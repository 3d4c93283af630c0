from typing import Optional

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine, async_sessionmaker
from .. import models  # noqa: F401  registers every table
from ..models.base import Base
from .settings import settings


def build_engine(database_url: Optional[str] = None) -> AsyncEngine:
    return create_async_engine(database_url or settings.database_url)


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def init_db(engine: AsyncEngine):
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
