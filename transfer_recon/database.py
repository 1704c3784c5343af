"""Database configuration and session management."""

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from transfer_recon.config import settings


class Base(DeclarativeBase):
    """SQLAlchemy declarative base."""

    pass


def create_engine(database_url: str | None = None) -> AsyncEngine:
    """Create the async engine for the configured (or given) database."""
    return create_async_engine(database_url or settings.database_url, echo=settings.debug)


def create_session_maker(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind, class_=AsyncSession, expire_on_commit=False)


engine = create_engine()
async_session_maker = create_session_maker(engine)


def get_session_maker() -> async_sessionmaker[AsyncSession]:
    return async_session_maker


async def init_db(bind: AsyncEngine | None = None) -> None:
    """Create the transactions schema if it does not exist yet."""
    from transfer_recon import models  # noqa: F401
    from transfer_recon.logger import get_logger

    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    get_logger(__name__).info("Database initialized")
