"""Async SQLAlchemy engine and session factory.

The process-wide engine is built from ``config.database_url``.  Tests and
one-off tools can build their own with ``make_engine`` (e.g. an in-memory
``sqlite+aiosqlite://`` URL) and pass sessions to ``Repository`` directly.
"""

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from autoflow.config import config


def make_engine(url: str, echo: bool = False) -> AsyncEngine:
    """Create an async engine; pooled connections are health-checked except on SQLite.

    An in-memory SQLite database lives as long as its connection, so every
    session shares a single one.
    """
    if not url.startswith("sqlite"):
        kwargs = {"pool_pre_ping": True}
    elif url.endswith("://") or ":memory:" in url:
        kwargs = {"poolclass": StaticPool, "connect_args": {"check_same_thread": False}}
    else:
        kwargs = {}
    return create_async_engine(url, echo=echo, **kwargs)


engine = make_engine(config.database_url, echo=config.debug)
async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def get_session() -> AsyncSession:
    """Dependency injection for FastAPI routes."""
    async with async_session() as session:
        yield session


async def init_db(bind: AsyncEngine = None):
    """Create all tables. Called at startup."""
    from autoflow.db.models import Base
    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
