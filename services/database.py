"""Database handle for async Postgres operations.

One Database is constructed at process startup (FastAPI lifespan), passed
into every service that needs the store, and disposed on shutdown. It is
never re-created mid-process.
"""
import os
import ssl
import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional
from urllib.parse import urlparse, parse_qs, urlencode, urlunparse

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession, AsyncEngine
from sqlmodel import SQLModel

# Register table metadata before create_all
import models.db_models  # noqa: F401

logger = logging.getLogger(__name__)


def normalize_database_url(database_url: str) -> tuple[str, dict]:
    """Translate a libpq-style URL into one the async drivers accept.

    Returns:
        Tuple of (database URL with async driver, connect_args dict).
    """
    parsed = urlparse(database_url)

    # SQLite (tests, local dev) needs no rewriting
    if parsed.scheme.startswith("sqlite"):
        return database_url, {}

    query_params = parse_qs(parsed.query)

    connect_args = {}
    ssl_required = False

    if 'sslmode' in query_params:
        sslmode = query_params['sslmode'][0]
        if sslmode in ('require', 'verify-ca', 'verify-full'):
            ssl_required = True

    # Remove asyncpg-incompatible parameters from query string
    incompatible_params = ['sslmode', 'channel_binding', 'options']
    filtered_params = {k: v for k, v in query_params.items() if k not in incompatible_params}
    new_query = urlencode(filtered_params, doseq=True) if filtered_params else ''

    clean_url = urlunparse((
        'postgresql+asyncpg',
        parsed.netloc,
        parsed.path,
        parsed.params,
        new_query,
        parsed.fragment
    ))

    if ssl_required:
        ssl_context = ssl.create_default_context()
        ssl_context.check_hostname = False
        ssl_context.verify_mode = ssl.CERT_NONE  # Neon uses self-signed certs
        connect_args['ssl'] = ssl_context

    return clean_url, connect_args


def get_database_url() -> str:
    """Read DATABASE_URL from the environment.

    Raises:
        ValueError: If DATABASE_URL is not set.
    """
    database_url = os.getenv("DATABASE_URL")
    if not database_url:
        raise ValueError("DATABASE_URL environment variable is not set")
    return database_url


class Database:
    """Owns the async engine and session factory.

    Args:
        url: Database URL. Defaults to DATABASE_URL.
        **engine_kwargs: Overrides for create_async_engine (tests pass
            poolclass=NullPool for SQLite).
    """

    def __init__(self, url: Optional[str] = None, **engine_kwargs):
        database_url, connect_args = normalize_database_url(url or get_database_url())

        if database_url.startswith("sqlite"):
            options = {}
        else:
            options = {
                "pool_pre_ping": True,  # Verify connections before use
                "pool_size": 5,
                "max_overflow": 10,
                "pool_recycle": 300,  # Recycle connections every 5 minutes
            }
        options["connect_args"] = connect_args
        options.update(engine_kwargs)

        self.engine: AsyncEngine = create_async_engine(database_url, echo=False, **options)
        self._session_maker = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False
        )

        logger.info(f"Database engine created: driver={self.engine.url.drivername}")

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """Async context manager for database sessions.

        Usage:
            async with db.session() as session:
                result = await session.execute(query)
        """
        async with self._session_maker() as session:
            try:
                yield session
            except IntegrityError as e:
                # Unique-key conflicts are an expected signal (dedup); callers decide
                await session.rollback()
                logger.info(f"Database constraint conflict: {e.orig}")
                raise
            except SQLAlchemyError as e:
                await session.rollback()
                logger.error(f"Database session error: {e}", exc_info=True)
                raise
            except Exception:
                await session.rollback()
                raise

    async def create_all(self) -> None:
        """Create all tables registered on SQLModel.metadata."""
        async with self.engine.begin() as conn:
            await conn.run_sync(SQLModel.metadata.create_all)
        logger.info("Database schema ensured")

    async def dispose(self) -> None:
        """Close the engine and its pooled connections."""
        await self.engine.dispose()
        logger.info("Database engine closed")
