"""Process-wide async SQLAlchemy engine for the SQL storage backend."""

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from gatekeeper.db import models  # noqa: F401
from gatekeeper.db.base import Base
from gatekeeper.progression.ranks import DEFAULT_RANK_NAMES, RankNames
from gatekeeper.storage.seed import seed_rank_definitions

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def engine_options(url: str) -> dict[str, object]:
    # SQLite does not take a sized pool
    if url.startswith("sqlite"):
        return {}
    return {
        "pool_size": 20,
        "max_overflow": 10,
        "pool_pre_ping": True,
        "connect_args": {"statement_cache_size": 0},
    }


async def init_db(url: str) -> async_sessionmaker[AsyncSession]:
    global _engine, _session_factory  # noqa: PLW0603
    _engine = create_async_engine(url, **engine_options(url))
    _session_factory = async_sessionmaker(_engine, class_=AsyncSession, expire_on_commit=False)
    return _session_factory


async def prepare_database(names: RankNames = DEFAULT_RANK_NAMES) -> int:
    """Create missing tables and seed the rank lattice.

    Both steps are idempotent. Returns the number of definitions inserted.
    """
    if _engine is None or _session_factory is None:
        msg = "Database not initialized. Call init_db() first."
        raise RuntimeError(msg)
    async with _engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    async with _session_factory() as db:
        return await seed_rank_definitions(db, names)


async def close_db() -> None:
    global _engine, _session_factory  # noqa: PLW0603
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _session_factory = None
