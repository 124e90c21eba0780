"""Tests for database migrations."""

import logging
import sqlite3

from agentrace.core.migrations import Migration, MigrationRunner, add_column_if_absent


def _create_legacy_schema(db_path):
    with sqlite3.connect(db_path) as conn:
        conn.execute("CREATE TABLE sessions (session_id TEXT PRIMARY KEY)")
        conn.execute("CREATE TABLE turns (id INTEGER PRIMARY KEY, session_id TEXT, turn_number INTEGER)")
        conn.execute("CREATE TABLE tool_executions (id INTEGER PRIMARY KEY, session_id TEXT)")
        conn.execute("CREATE TABLE commits (sha TEXT PRIMARY KEY)")
        conn.execute("CREATE TABLE pull_requests (id INTEGER PRIMARY KEY, repository TEXT, number INTEGER)")
        conn.execute("CREATE TABLE quality_metrics (id INTEGER PRIMARY KEY)")
        conn.execute("CREATE TABLE token_usage (id INTEGER PRIMARY KEY, message_id TEXT)")


def _columns(db_path, table: str) -> set[str]:
    with sqlite3.connect(db_path) as conn:
        return {row[1] for row in conn.execute(f"PRAGMA table_info({table})")}


class TestMigrations:
    def test_run_migrations__adds_columns_to_legacy_schema(self, tmp_path):
        db_path = tmp_path / "legacy.db"
        _create_legacy_schema(db_path)

        applied = MigrationRunner(db_path).run_migrations()

        assert len(applied) == 6
        assert any(m.startswith("001") and "start_head_sha" in m for m in applied)
        assert "start_head_sha" in _columns(db_path, "turns")
        assert {"tool_input", "error_message"} <= _columns(db_path, "tool_executions")
        assert {"data_source", "remote_url", "discovered_at"} <= _columns(db_path, "commits")
        assert {"ci_status", "checks_passed", "checks_failed", "head_sha"} <= _columns(db_path, "pull_requests")
        assert "total_cost_usd" in _columns(db_path, "sessions")

    def test_run_migrations__idempotent_execution(self, tmp_path):
        db_path = tmp_path / "legacy.db"
        _create_legacy_schema(db_path)

        first = MigrationRunner(db_path).run_migrations()
        second = MigrationRunner(db_path).run_migrations()

        assert len(first) == 6
        assert second == []

    def test_run_migrations__treats_existing_columns_as_applied(self, db):
        with sqlite3.connect(db.db_path) as conn:
            conn.execute("DELETE FROM _agentrace_migrations")

        applied = MigrationRunner(db.db_path).run_migrations()

        assert len(applied) == 6

    def test_run_migrations__logs_failure_and_continues(self, tmp_path, caplog):
        db_path = tmp_path / "partial.db"
        with sqlite3.connect(db_path) as conn:
            conn.execute("CREATE TABLE turns (id INTEGER PRIMARY KEY)")

        with caplog.at_level(logging.ERROR, logger="agentrace.core.migrations"):
            applied = MigrationRunner(db_path).run_migrations()

        assert applied == ["001: Add start_head_sha to turns"]
        assert "migration 002 failed" in caplog.text

    def test_run_migrations__runs_custom_migration_once(self, tmp_path):
        class CreateMarker(Migration):
            calls = 0

            @property
            def version(self) -> str:
                return "900"

            @property
            def description(self) -> str:
                return "Create marker table"

            def up(self, conn):
                CreateMarker.calls += 1
                conn.execute("CREATE TABLE IF NOT EXISTS marker (id INTEGER)")

        db_path = tmp_path / "custom.db"
        for _ in range(2):
            runner = MigrationRunner(db_path)
            runner.migrations = [CreateMarker()]
            runner.run_migrations()

        assert CreateMarker.calls == 1

    def test_get_migration_status__reports_applied_and_pending(self, tmp_path):
        db_path = tmp_path / "legacy.db"
        runner = MigrationRunner(db_path)

        status = runner.get_migration_status()
        assert status["total"] == 6
        assert len(status["pending"]) == 6

        _create_legacy_schema(db_path)
        runner.run_migrations()
        status = runner.get_migration_status()
        assert len(status["applied"]) == 6
        assert all("applied_at" in m for m in status["applied"])

    def test_add_column_if_absent__returns_false_for_duplicate(self, tmp_path):
        with sqlite3.connect(tmp_path / "x.db") as conn:
            conn.execute("CREATE TABLE t (a TEXT)")
            assert add_column_if_absent(conn, "t", "b", "TEXT") is True
            assert add_column_if_absent(conn, "t", "b", "TEXT") is False
