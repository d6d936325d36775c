"""Database migration runner."""

import logging
from pathlib import Path

import aiosqlite

logger = logging.getLogger(__name__)

# v1: tasks, profiles, analytics, chat links, offline queue
# v2: pending_reminders, closed_tasks
SCHEMA_VERSION = 2


async def get_schema_version(db: aiosqlite.Connection) -> int:
    """Read the schema version stored in the database header."""
    async with db.execute("PRAGMA user_version") as cursor:
        row = await cursor.fetchone()
        return int(row[0]) if row else 0


async def run_migrations(db_path: Path) -> None:
    """Bring the database at `db_path` up to SCHEMA_VERSION.

    schema.sql only creates tables and indexes that are missing, so running it
    again upgrades an older database. A version that alters existing columns
    needs its own step below.
    """
    async with aiosqlite.connect(db_path) as db:
        version = await get_schema_version(db)

        if version >= SCHEMA_VERSION:
            logger.debug(f"Database at {db_path} already at schema v{version}")
            return

        schema_sql = (Path(__file__).parent / "schema.sql").read_text()
        await db.executescript(schema_sql)

        await db.execute(f"PRAGMA user_version = {SCHEMA_VERSION}")
        await db.commit()

        logger.info(f"Database at {db_path} migrated v{version} -> v{SCHEMA_VERSION}")
