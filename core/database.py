"""
Database session management with SQLAlchemy async
"""

from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import NullPool
from core.config import settings
import logging

logger = logging.getLogger(__name__)


def build_engine(database_url: str, echo: bool = False) -> AsyncEngine:
    """Create an async engine for the given URL"""
    return create_async_engine(
        database_url,
        echo=echo,
        poolclass=NullPool,  # For async, connection pooling handled differently
        future=True
    )


def build_session_maker(db_engine: AsyncEngine) -> async_sessionmaker:
    """Create a session factory bound to an engine"""
    return async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False
    )


# Create async engine
engine = build_engine(settings.DATABASE_URL, echo=settings.ENVIRONMENT == "development")

# Create session factory
async_session_maker = build_session_maker(engine)
