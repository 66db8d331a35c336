"""Async database engine and session management."""

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from spot_handoff.app.config import get_settings


class Base(DeclarativeBase):
    """SQLAlchemy declarative base for all models."""
    pass


settings = get_settings()


def build_engine(database_url: str):
    """Create an async engine, auto-detecting driver options from the URL."""
    is_sqlite = "sqlite" in database_url
    connect_args = {}
    if is_sqlite:
        connect_args["check_same_thread"] = False
        connect_args["timeout"] = 30  # Wait up to 30s for write lock (default 5s)

    engine_kwargs = {
        "echo": False,
        "connect_args": connect_args,
    }
    if not is_sqlite:
        engine_kwargs["pool_size"] = 5
        engine_kwargs["max_overflow"] = 10

    return create_async_engine(database_url, **engine_kwargs)


def build_session_factory(bind) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind, class_=AsyncSession, expire_on_commit=False)


engine = build_engine(settings.database_url)

async_session = build_session_factory(engine)


async def init_db(bind=None):
    """Create all tables (for local dev). Use migrations for production."""
    # Ensure models are registered with Base.metadata
    import spot_handoff.domain.models  # noqa: F401

    bind = bind or engine
    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    # WAL mode lets readers proceed while the sweeper or a reservation holds
    # the single writer slot.
    if bind.dialect.name == "sqlite" and bind.url.database not in (None, "", ":memory:"):
        async with bind.begin() as conn:
            await conn.execute(text("PRAGMA journal_mode=WAL"))
            await conn.execute(text("PRAGMA busy_timeout=30000"))
