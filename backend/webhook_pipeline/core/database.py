"""
Database connection and session management.
"""
from typing import AsyncGenerator, Any, Dict
from contextlib import asynccontextmanager

from sqlalchemy import Enum as SQLEnum
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import NullPool
from sqlalchemy.orm import declarative_base
from sqlalchemy.exc import OperationalError, DisconnectionError

from webhook_pipeline.core.config import settings
from webhook_pipeline.core.logging import get_logger

logger = get_logger(__name__)


def _engine_options(database_url: str) -> Dict[str, Any]:
    """
    Build engine keyword arguments for the configured backend.

    SQLite (used for local runs and tests) gets a fresh connection per
    session and a generous lock timeout so concurrent writers queue up
    instead of failing. Postgres gets a sized connection pool.
    """
    if database_url.startswith("sqlite"):
        return {
            "poolclass": NullPool,
            "connect_args": {"timeout": 30},
            "echo": False,
        }

    return {
        "pool_size": settings.DB_POOL_SIZE,
        "max_overflow": settings.DB_MAX_OVERFLOW,
        "pool_pre_ping": True,
        "pool_recycle": 3600,
        "echo": False,
        "connect_args": {
            "command_timeout": 30,
            "server_settings": {
                "application_name": "webhook_pipeline",
            },
        },
    }


engine = create_async_engine(settings.DATABASE_URL, **_engine_options(settings.DATABASE_URL))

AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False,
)

# Base class for database models
Base = declarative_base()


def enum_column_type(enum_cls) -> SQLEnum:
    """Store a str enum by value as VARCHAR so migrations need no native enum types."""
    return SQLEnum(
        enum_cls,
        values_callable=lambda members: [m.value for m in members],
        native_enum=False,
        length=32,
    )


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Dependency for getting a database session.

    Commits when the request handler finishes without error and rolls back
    otherwise.
    """
    session = AsyncSessionLocal()
    try:
        yield session
        await session.commit()
    except (OperationalError, DisconnectionError) as e:
        logger.error(f"Database connection error: {e}")
        await session.rollback()
        raise
    except Exception:
        await session.rollback()
        raise
    finally:
        await session.close()


@asynccontextmanager
async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Context manager for getting a database session outside of a request.

    Used by background follow-ups and Celery workers, which run after the
    request session has been closed.
    """
    session = AsyncSessionLocal()
    try:
        yield session
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    finally:
        await session.close()


# Alias for Celery workers - uses the same context manager
get_async_session_context = get_db_session
