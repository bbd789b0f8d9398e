"""
Schema migrations for the object store.

Migrations are plain SQL files named ``NNN_description.sql`` under
``migrations/``. They only ever move forward, each one commits in its own
transaction together with its row in ``schema_migrations``, and a
PostgreSQL advisory lock keeps operator replicas that start together from
applying the same file twice.
"""

import logging
import re
from pathlib import Path
from typing import List, NamedTuple, Set

import asyncpg

logger = logging.getLogger(__name__)

MIGRATIONS_DIR = Path(__file__).parent / "migrations"
MIGRATION_PATTERN = re.compile(r"^(\d{3})_.+\.sql$")

# Arbitrary application-wide key for pg_advisory_lock
MIGRATION_LOCK_KEY = 7301946

SCHEMA_MIGRATIONS_DDL = """
    CREATE TABLE IF NOT EXISTS schema_migrations (
        id SERIAL PRIMARY KEY,
        version VARCHAR(16) NOT NULL UNIQUE,
        filename VARCHAR(255) NOT NULL,
        applied_at TIMESTAMP NOT NULL DEFAULT NOW()
    )
"""


class Migration(NamedTuple):
    version: str
    filename: str
    path: Path


async def ensure_migration_table(conn: asyncpg.Connection) -> None:
    await conn.execute(SCHEMA_MIGRATIONS_DDL)


def discover_migrations() -> List[Migration]:
    """
    List the migration files in version order.

    Raises:
        FileNotFoundError: If MIGRATIONS_DIR is missing.
    """
    if not MIGRATIONS_DIR.is_dir():
        raise FileNotFoundError(f"Migrations directory not found: {MIGRATIONS_DIR}")

    found = []
    for path in MIGRATIONS_DIR.iterdir():
        match = MIGRATION_PATTERN.match(path.name)
        if match is not None and path.is_file():
            found.append(Migration(match.group(1), path.name, path))
    return sorted(found)


async def get_applied_versions(conn: asyncpg.Connection) -> Set[str]:
    records = await conn.fetch("SELECT version FROM schema_migrations")
    return {record["version"] for record in records}


async def apply_migration(
    conn: asyncpg.Connection, version: str, filename: str, path: Path
) -> None:
    """
    Run one migration file and record it, atomically.

    A failing file is rolled back together with its bookkeeping row, so it
    is retried on the next start.
    """
    statements = path.read_text(encoding="utf-8")
    async with conn.transaction():
        await conn.execute(statements)
        await conn.execute(
            "INSERT INTO schema_migrations (version, filename) VALUES ($1, $2)",
            version,
            filename,
        )
    logger.info(f"Applied migration {filename}")


async def run_migrations(pool: asyncpg.Pool) -> int:
    """
    Bring the schema up to date.

    Returns:
        How many migrations were applied by this call.

    Raises:
        FileNotFoundError: If MIGRATIONS_DIR is missing.
        asyncpg.PostgresError: If a migration fails. Migrations applied
            before it stay applied.
    """
    migrations = discover_migrations()
    applied_now = 0

    async with pool.acquire() as conn:
        await conn.execute("SELECT pg_advisory_lock($1)", MIGRATION_LOCK_KEY)
        try:
            await ensure_migration_table(conn)
            if not migrations:
                logger.info("No migration files found")
                return 0

            done = await get_applied_versions(conn)
            for migration in migrations:
                if migration.version in done:
                    continue
                await apply_migration(conn, *migration)
                applied_now += 1
        finally:
            await conn.execute("SELECT pg_advisory_unlock($1)", MIGRATION_LOCK_KEY)

    if applied_now:
        logger.info(f"Applied {applied_now} migration(s)")
    else:
        logger.info("Database schema is up to date")
    return applied_now
