"""Postgres engine and sessions backing the durable ``codes`` table.

Only the durable store talks to Postgres. Reservations, metrics, webhook
claims and rate limits all live in Redis.

Session Lifecycle
=================
::
    lifespan startup ──► init_db()   create the codes table if missing
    each request     ──► get_db()    one AsyncSession, closed on exit
                              └──► DurableCodeStore(session)
    lifespan shutdown ─► close_db()  dispose the pool

Key Behaviours
===============
- expire_on_commit is off so an IssuedCode can be serialised after commit.
- pool_pre_ping drops dead connections before a confirm hits them.
"""

from collections.abc import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from shortcodes.config import get_settings

__all__ = ["Base", "get_db", "init_db", "close_db"]

settings = get_settings()

engine = create_async_engine(
    settings.DATABASE_URL,
    echo=(settings.APP_ENV == "development"),
    pool_size=10,
    max_overflow=5,
    pool_pre_ping=True,
)

async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


class Base(DeclarativeBase):
    pass


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async with async_session() as session:
        yield session


async def init_db() -> None:
    # IssuedCode must be registered on Base.metadata first
    import shortcodes.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    await engine.dispose()
