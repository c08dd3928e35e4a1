# loyalty/database.py
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker, declarative_base

# Base declarative
Base = declarative_base()


def create_engine(database_uri: str, echo: bool = False) -> AsyncEngine:
    # pool_pre_ping: the worker keeps connections idle between ticks
    return create_async_engine(database_uri, echo=echo, future=True, pool_pre_ping=True)


def create_session_maker(engine: AsyncEngine) -> sessionmaker:
    return sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


async def create_tables(engine: AsyncEngine) -> None:
    """Development convenience; production schemas come from alembic."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
