"""
DealerDesk Database Session Management

Async SQLAlchemy engine, the session factory handed to DealerGPT components,
and schema bootstrap for local/test databases.
"""

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from core.config import get_settings

settings = get_settings()


def build_engine(database_url: str, echo: bool = False) -> AsyncEngine:
    """Pooled engine for server databases; SQLite gets the driver defaults."""
    if database_url.startswith("sqlite"):
        return create_async_engine(database_url, echo=echo)
    return create_async_engine(
        database_url,
        echo=echo,
        pool_size=20,
        max_overflow=10,
        pool_pre_ping=True,
    )


engine = build_engine(settings.database_url, echo=settings.database_echo)

AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    """Declarative base for all SQLAlchemy models."""
    pass


async def create_tables(bind: AsyncEngine | None = None) -> None:
    """Create any missing tables. Existing tables are left untouched."""
    import db.models  # noqa: F401  registers the mappers on Base

    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
