"""Unit tests for migrate.py - Database migration runner."""

import pytest
from unittest.mock import AsyncMock, MagicMock, call
from contextlib import asynccontextmanager

import migrate
from migrate import (
    MIGRATION_LOCK_KEY,
    apply_migration,
    discover_migrations,
    ensure_migration_table,
    get_applied_versions,
    run_migrations,
)


def make_connection(applied=()):
    conn = AsyncMock()
    conn.fetch = AsyncMock(return_value=[{"version": v} for v in applied])
    conn.transaction = MagicMock()
    conn.transaction.return_value.__aenter__ = AsyncMock()
    conn.transaction.return_value.__aexit__ = AsyncMock(return_value=False)
    return conn


def make_pool(conn):
    pool = MagicMock()

    @asynccontextmanager
    async def mock_acquire():
        yield conn

    pool.acquire = mock_acquire
    return pool


def executed_sql(conn):
    return [c.args[0] for c in conn.execute.call_args_list]


class TestDiscoverMigrations:
    """Tests for discover_migrations function."""

    def test_returns_sorted_list(self, tmp_path, monkeypatch):
        (tmp_path / "002_add_index.sql").write_text("CREATE INDEX i ON t(id);")
        (tmp_path / "001_initial.sql").write_text("CREATE TABLE t (id INT);")
        monkeypatch.setattr(migrate, "MIGRATIONS_DIR", tmp_path)

        result = discover_migrations()

        assert [(v, f) for v, f, _ in result] == [
            ("001", "001_initial.sql"),
            ("002", "002_add_index.sql"),
        ]
        assert result[0][2] == tmp_path / "001_initial.sql"

    def test_skips_non_migrations(self, tmp_path, monkeypatch):
        (tmp_path / "001_initial.sql").write_text("CREATE TABLE t (id INT);")
        (tmp_path / "002_readme.txt").write_text("not a migration")
        (tmp_path / "initial.sql").write_text("no version prefix")
        (tmp_path / "003_dir.sql").mkdir()
        monkeypatch.setattr(migrate, "MIGRATIONS_DIR", tmp_path)

        assert [v for v, _, _ in discover_migrations()] == ["001"]

    def test_missing_directory(self, tmp_path, monkeypatch):
        monkeypatch.setattr(migrate, "MIGRATIONS_DIR", tmp_path / "missing")

        with pytest.raises(FileNotFoundError):
            discover_migrations()

    def test_bundled_schema(self):
        versions = [v for v, _, _ in discover_migrations()]
        assert versions[0] == "001"


@pytest.mark.asyncio
class TestMigrationHelpers:
    """Tests for the per-connection helpers."""

    async def test_ensure_migration_table(self):
        conn = make_connection()

        await ensure_migration_table(conn)

        assert "CREATE TABLE IF NOT EXISTS schema_migrations" in executed_sql(conn)[0]

    async def test_get_applied_versions(self):
        conn = make_connection(applied=["001", "002"])

        assert await get_applied_versions(conn) == {"001", "002"}

    async def test_apply_migration_records_version(self, tmp_path):
        path = tmp_path / "001_initial.sql"
        path.write_text("CREATE TABLE t (id INT);")
        conn = make_connection()

        await apply_migration(conn, "001", "001_initial.sql", path)

        conn.transaction.assert_called_once()
        assert conn.execute.call_args_list == [
            call("CREATE TABLE t (id INT);"),
            call(
                "INSERT INTO schema_migrations (version, filename) VALUES ($1, $2)",
                "001",
                "001_initial.sql",
            ),
        ]

    async def test_apply_migration_propagates_exception(self, tmp_path):
        path = tmp_path / "001_bad.sql"
        path.write_text("NOT SQL;")
        conn = make_connection()
        conn.execute.side_effect = Exception("syntax error")

        with pytest.raises(Exception, match="syntax error"):
            await apply_migration(conn, "001", "001_bad.sql", path)


@pytest.mark.asyncio
class TestRunMigrations:
    """Tests for run_migrations."""

    @pytest.fixture
    def migrations_dir(self, tmp_path, monkeypatch):
        (tmp_path / "001_initial.sql").write_text("CREATE TABLE t (id INT);")
        (tmp_path / "002_add_index.sql").write_text("CREATE INDEX i ON t(id);")
        monkeypatch.setattr(migrate, "MIGRATIONS_DIR", tmp_path)
        return tmp_path

    async def test_fresh_database(self, migrations_dir):
        conn = make_connection()

        count = await run_migrations(make_pool(conn))

        assert count == 2
        sql = executed_sql(conn)
        assert "CREATE TABLE t (id INT);" in sql
        assert "CREATE INDEX i ON t(id);" in sql

    async def test_applies_only_pending(self, migrations_dir):
        conn = make_connection(applied=["001"])

        count = await run_migrations(make_pool(conn))

        assert count == 1
        sql = executed_sql(conn)
        assert "CREATE TABLE t (id INT);" not in sql
        assert "CREATE INDEX i ON t(id);" in sql

    async def test_up_to_date(self, migrations_dir):
        conn = make_connection(applied=["001", "002"])

        assert await run_migrations(make_pool(conn)) == 0
        conn.transaction.assert_not_called()

    async def test_no_migration_files(self, tmp_path, monkeypatch):
        monkeypatch.setattr(migrate, "MIGRATIONS_DIR", tmp_path)
        conn = make_connection()

        assert await run_migrations(make_pool(conn)) == 0

    async def test_serialized_by_advisory_lock(self, migrations_dir):
        conn = make_connection()

        await run_migrations(make_pool(conn))

        calls = conn.execute.call_args_list
        assert calls[0] == call("SELECT pg_advisory_lock($1)", MIGRATION_LOCK_KEY)
        assert "schema_migrations" in calls[1].args[0]
        assert calls[-1] == call("SELECT pg_advisory_unlock($1)", MIGRATION_LOCK_KEY)

    async def test_lock_released_on_failure(self, migrations_dir):
        conn = make_connection()

        async def execute(sql, *args):
            if sql.startswith("CREATE INDEX"):
                raise Exception("boom")

        conn.execute.side_effect = execute

        with pytest.raises(Exception, match="boom"):
            await run_migrations(make_pool(conn))

        assert conn.execute.call_args_list[-1] == call(
            "SELECT pg_advisory_unlock($1)", MIGRATION_LOCK_KEY
        )
