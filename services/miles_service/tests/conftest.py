from __future__ import annotations

import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from services.miles_service.app.db.base import Base


@pytest_asyncio.fixture()
async def session_factory(tmp_path):
    # File-backed so that every session gets its own connection.
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'miles.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)
    await engine.dispose()
