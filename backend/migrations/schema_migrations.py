"""
Auto-migration system for schema changes.

Runs at startup: creates missing tables, then on PostgreSQL adds any model
columns the existing tables lack. SQLite databases are local and disposable,
so create_all alone is enough there.
"""

import asyncio
import logging
import sys
from pathlib import Path

# Add parent directory to path for imports when running standalone
if __name__ == "__main__":
    sys.path.insert(0, str(Path(__file__).parent.parent))

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine
from database import engine, Base
import models  # noqa: F401  registers every table on Base.metadata

logger = logging.getLogger(__name__)


async def get_table_columns(engine: AsyncEngine, table_name: str) -> set:
    """Get all column names for a table from the database."""
    async with engine.connect() as conn:
        if engine.dialect.name == "sqlite":
            result = await conn.execute(text(f"PRAGMA table_info({table_name})"))
            return {row[1] for row in result}
        result = await conn.execute(
            text("SELECT column_name FROM information_schema.columns WHERE table_name = :table_name"),
            {"table_name": table_name},
        )
        return {row[0] for row in result}


def _default_clause(col) -> str:
    """SQL DEFAULT for scalar column defaults; callables (ids, timestamps) get none."""
    if col.default is None or not hasattr(col.default, "arg") or callable(col.default.arg):
        return ""
    value = col.default.arg
    if isinstance(value, str):
        return f"DEFAULT '{value}'"
    if isinstance(value, (bool, int, float)):
        return f"DEFAULT {value}"
    return ""


async def add_missing_columns(engine: AsyncEngine) -> int:
    """
    Add model columns missing from existing tables. Safe to run repeatedly.

    Returns the number of columns added.
    """
    if engine.dialect.name == "sqlite":
        logger.info("Skipping column detection for SQLite. create_all handles table creation.")
        return 0

    logger.info("Checking for missing database columns...")
    added = 0

    for table_name, table in Base.metadata.tables.items():
        db_columns = await get_table_columns(engine, table_name)
        missing_columns = {col.name for col in table.columns} - db_columns
        if not missing_columns:
            continue

        logger.info(f"Table '{table_name}' is missing columns: {missing_columns}")

        async with engine.begin() as conn:
            for col_name in sorted(missing_columns):
                col = table.columns[col_name]
                col_type = col.type.compile(engine.dialect)
                default_clause = _default_clause(col)
                # New NOT NULL columns need a default to backfill existing rows
                nullable = "NOT NULL" if not col.nullable and default_clause else "NULL"

                await conn.execute(text(
                    f"ALTER TABLE {table_name} "
                    f"ADD COLUMN IF NOT EXISTS {col_name} {col_type} {nullable} {default_clause}"
                ))
                logger.info(f"Added column {table_name}.{col_name}")
                added += 1

    if added:
        logger.info(f"Schema migration completed - {added} column(s) added")
    else:
        logger.info("Schema is up to date - no changes needed")
    return added


async def run_migrations():
    """
    Main migration entry point.
    1. Creates missing tables (via create_all)
    2. Adds missing columns to existing tables
    """
    logger.info("=" * 60)
    logger.info("Starting database schema migration...")
    logger.info("=" * 60)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("All tables exist")

    await add_missing_columns(engine)

    logger.info("Database schema migration completed!")


if __name__ == "__main__":
    # Allow running migrations standalone
    logging.basicConfig(level=logging.INFO)
    asyncio.run(run_migrations())
