import logging
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import NullPool
from sqlalchemy import text
from config import settings
from tenacity import retry, stop_after_attempt, wait_fixed, retry_if_exception_type

logger = logging.getLogger(__name__)

DATABASE_URL = settings.database_url_async


def create_app_engine():
    """Build the async engine for the configured database."""
    engine_kwargs = {"echo": settings.DATABASE_ECHO, "future": True}

    if DATABASE_URL.startswith("sqlite"):
        engine_kwargs["connect_args"] = {"check_same_thread": False}
        # One connection per session; aiosqlite connections must not outlive their event loop
        engine_kwargs["poolclass"] = NullPool

    if settings.DATABASE_AUTOCOMMIT:
        engine_kwargs["isolation_level"] = "AUTOCOMMIT"

    return create_async_engine(DATABASE_URL, **engine_kwargs)


engine = create_app_engine()
async_session_maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

Base = declarative_base()


async def get_db():
    """Dependency for getting async database sessions"""
    async with async_session_maker() as session:
        try:
            yield session
        finally:
            await session.close()


def supports_atomic_writes() -> bool:
    """
    Whether the storage can commit several statements as one unit.

    Decided from configuration only; no session is opened to probe the
    database. Every supported SQL backend runs transactions, so only an
    engine put in autocommit mode (DATABASE_AUTOCOMMIT) or an explicit
    SALES_ATOMIC_WRITES=false turns this off. In autocommit mode every
    statement applies on its own and a rollback would not undo earlier steps.
    """
    return settings.SALES_ATOMIC_WRITES and not settings.DATABASE_AUTOCOMMIT


@retry(
    retry=retry_if_exception_type((ConnectionRefusedError, OSError)),
    stop=stop_after_attempt(12),  # 60 seconds total (12 attempts * 5 seconds)
    wait=wait_fixed(5),
    reraise=True,
    before_sleep=lambda retry_state: logger.warning(
        f"Database connection attempt {retry_state.attempt_number} failed. "
        f"Retrying in 5 seconds... (Error: {retry_state.outcome.exception()})"
    )
)
async def init_db():
    """
    Initialize database tables and schema with retry logic.

    Retries while the database refuses connections, which happens when the
    database container starts after the API.
    """
    logger.info("Attempting to connect to database and run migrations...")

    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
            logger.info("Database connection successful!")

        # Import here to avoid circular imports
        from migrations.schema_migrations import run_migrations
        await run_migrations()

        logger.info("Database initialization complete!")
    except Exception as e:
        logger.error(f"Database initialization failed: {e}")
        raise
