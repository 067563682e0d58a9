import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Iterable, Optional, Sequence

from sqlalchemy import inspect, text
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from scraper_db.config import Settings, async_database_url, get_settings
from scraper_db.errors import InvariantViolation, QueryError

logger = logging.getLogger(__name__)

# Base class for SQLAlchemy models
Base = declarative_base()

TABLE_NAMES = ("message", "delivered_message")

# asyncpg caps a statement at 32767 bind parameters, SQLite at 32766
MAX_BIND_PARAMETERS = 32766


class ScraperDb:
    """
    Handle on the scraper's relational store.

    Owns the async engine and session factory. Constructed by the caller and
    passed explicitly to every store operation; each operation acquires its
    own session through `session()` and releases it on exit.
    """

    def __init__(self, database_url: str, echo: bool = False, pool_pre_ping: bool = True):
        self.database_url = async_database_url(database_url)
        self.engine = create_async_engine(
            self.database_url,
            echo=echo,
            pool_pre_ping=pool_pre_ping,
        )
        self.session_factory = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "ScraperDb":
        settings = settings or get_settings()
        return cls(
            settings.DATABASE_URL,
            echo=settings.DB_ECHO,
            pool_pre_ping=settings.DB_POOL_PRE_PING,
        )

    @property
    def dialect(self) -> str:
        return self.engine.dialect.name

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """
        Scoped session for a single store operation.

        Rolls back on any error. Driver/SQL failures surface as QueryError.
        """
        async with self.session_factory() as session:
            try:
                yield session
            except SQLAlchemyError as e:
                await session.rollback()
                logger.error(f"Database operation failed: {e}")
                raise QueryError(str(e)) from e
            except Exception:
                await session.rollback()
                raise

    async def dispose(self) -> None:
        """Close all pooled connections."""
        await self.engine.dispose()


async def init_db(db: ScraperDb) -> None:
    """
    Initialize the database by creating all tables.
    Called during application startup.
    """
    logger.debug(f"Initializing database with URL: {db.engine.url.render_as_string(hide_password=True)}")
    try:
        # Import models to register them with Base.metadata
        from scraper_db.models import DeliveredMessage, Message  # noqa: F401

        logger.debug("Creating database tables...")
        async with db.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database initialized successfully")
    except SQLAlchemyError as e:
        logger.error(f"Failed to initialize database: {e}")
        raise QueryError(str(e)) from e


async def check_db_health(db: ScraperDb) -> bool:
    """
    Check if the database is reachable and schema is applied.

    Returns:
        True if DB is healthy and both tables exist, False otherwise.
    """
    logger.debug("Checking database health...")
    try:
        async with db.engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
            logger.debug("Database connectivity OK")

            existing = await conn.run_sync(
                lambda sync_conn: set(inspect(sync_conn).get_table_names())
            )
        missing = [name for name in TABLE_NAMES if name not in existing]
        if missing:
            logger.error(f"Database schema not applied: missing tables {missing}")
            return False
        logger.debug("Database health check passed")
        return True
    except (SQLAlchemyError, OSError) as e:
        logger.error(f"Database health check failed: {e}")
        return False


def upsert_statement(
    dialect: str,
    model,
    rows: Sequence[dict],
    conflict_columns: Iterable[str],
    update_columns: Iterable[str],
):
    """
    Build a batch INSERT ... ON CONFLICT (...) DO UPDATE for the given dialect.

    Args:
        dialect: Engine dialect name ("sqlite" or "postgresql")
        model: ORM model to insert into
        rows: Column value dicts, at most one per conflict key
        conflict_columns: Columns of the unique constraint to resolve on
        update_columns: Columns refreshed from the incoming row on conflict

    Returns:
        Executable insert statement

    Raises:
        InvariantViolation: If the batch needs more than MAX_BIND_PARAMETERS
            bind parameters. The batch is one statement so it commits or
            fails whole; callers split oversize batches themselves.
    """
    if dialect == "postgresql":
        stmt = postgresql.insert(model)
    elif dialect == "sqlite":
        stmt = sqlite.insert(model)
    else:
        raise QueryError(f"Dialect {dialect!r} has no insert-or-update support")

    rows = list(rows)
    parameters = sum(len(row) for row in rows)
    if parameters > MAX_BIND_PARAMETERS:
        raise InvariantViolation(
            f"Batch of {len(rows)} rows needs {parameters} bind parameters, "
            f"more than the {MAX_BIND_PARAMETERS} a single statement allows"
        )

    stmt = stmt.values(rows)
    return stmt.on_conflict_do_update(
        index_elements=list(conflict_columns),
        set_={name: stmt.excluded[name] for name in update_columns},
    )
