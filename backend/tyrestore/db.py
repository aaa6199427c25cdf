import os
from typing import Any, AsyncIterator, Dict

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import StaticPool

DATABASE_URL = os.environ.get("DATABASE_URL", "sqlite+aiosqlite:///./local.db").strip()


def _int_env(name: str, default: int) -> int:
    raw = (os.environ.get(name) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        print(f"[DB] Ignoring invalid {name}={raw!r}")
        return default


def engine_options(url: str) -> Dict[str, Any]:
    """Engine kwargs for the given URL: pool tuning for servers, a shared connection for in-memory SQLite."""
    opts: Dict[str, Any] = {"echo": False, "future": True}
    url_l = (url or "").lower()
    if url_l.startswith("sqlite"):
        if ":memory:" in url_l:
            # every session must see the same in-memory database
            opts.update({"poolclass": StaticPool, "connect_args": {"check_same_thread": False}})
        return opts
    # Postgres drops idle connections; pre-ping and recycle keep the pool healthy
    opts.update({
        "pool_pre_ping": True,
        "pool_recycle": _int_env("DB_POOL_RECYCLE_SECONDS", 300),
    })
    for env_name, key, default in (
        ("DB_POOL_SIZE", "pool_size", 5),
        ("DB_MAX_OVERFLOW", "max_overflow", 10),
        ("DB_POOL_TIMEOUT", "pool_timeout", 30),
    ):
        if os.environ.get(env_name):
            opts[key] = _int_env(env_name, default)
    return opts


engine = create_async_engine(DATABASE_URL, **engine_options(DATABASE_URL))
SessionLocal = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)
Base = declarative_base()


async def get_session() -> AsyncIterator[AsyncSession]:
    """FastAPI dependency that yields an async session."""
    async with SessionLocal() as session:
        yield session


async def init_db():
    """Create missing tables (safe to run repeatedly)."""
    from . import models  # register tables on Base.metadata

    async with engine.begin() as conn:
        await conn.run_sync(models.Base.metadata.create_all)
