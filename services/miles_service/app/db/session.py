from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from services.miles_service.app.errors import TransactionConflict
from services.miles_service.app.settings import miles_settings

SessionFactory = async_sessionmaker[AsyncSession]

# serialization_failure, deadlock_detected
CONFLICT_SQLSTATES = frozenset({"40001", "40P01"})


def build_engine(url: str | None = None) -> AsyncEngine:
    settings = miles_settings()
    engine = create_async_engine(
        url or settings.async_db_url,
        echo=False,
        pool_pre_ping=True,
    )
    return engine


def build_session_factory(engine: AsyncEngine) -> SessionFactory:
    return async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


def is_transaction_conflict(exc: BaseException) -> bool:
    """True for driver errors that abort a transaction because of a concurrent writer."""
    if not isinstance(exc, DBAPIError):
        return False
    orig = exc.orig
    sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    return sqlstate in CONFLICT_SQLSTATES


@asynccontextmanager
async def unit_of_work(session_factory: SessionFactory, isolation_level: str | None = None) -> AsyncIterator[AsyncSession]:
    """One transaction at the requested isolation level.

    Commits when the block exits cleanly; any exception rolls back every write
    made inside the block and propagates. Serialization failures and deadlocks
    surface as ``TransactionConflict`` so callers can map them to a result.
    The transaction is never retried here.
    """
    async with session_factory() as session:
        if isolation_level:
            await session.connection(execution_options={"isolation_level": isolation_level})
        try:
            yield session
            await session.commit()
        except Exception as exc:
            await session.rollback()
            if is_transaction_conflict(exc):
                raise TransactionConflict("Concurrent update on the same wallet or request") from exc
            raise
