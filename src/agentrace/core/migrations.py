"""Additive database migrations for agentrace.

Every migration only adds columns or indexes, so any number of short-lived
hook processes can run the full list concurrently without a coordinator.
"""

import logging
import sqlite3
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

from agentrace.core.errors import SchemaDriftError
from agentrace.core.timestamps import to_db, utcnow

logger = logging.getLogger(__name__)


def add_column_if_absent(conn: sqlite3.Connection, table: str, column: str, ddl: str) -> bool:
    """Add a column, treating "duplicate column name" as success.

    Returns:
        True if the column was added, False if it already existed.
    """
    try:
        conn.execute(f"ALTER TABLE {table} ADD COLUMN {column} {ddl}")
    except sqlite3.OperationalError as e:
        if "duplicate column name" in str(e).lower():
            return False
        raise
    return True


class Migration(ABC):
    """Base class for database migrations."""

    @property
    @abstractmethod
    def version(self) -> str:
        """Version identifier for this migration."""

    @property
    @abstractmethod
    def description(self) -> str:
        """Human-readable description of this migration."""

    @abstractmethod
    def up(self, conn: sqlite3.Connection) -> None:
        """Apply the migration."""


class AddColumnsMigration(Migration):
    """A migration that is nothing but a list of additive columns."""

    columns: tuple[tuple[str, str, str], ...] = ()

    def up(self, conn: sqlite3.Connection) -> None:
        for table, column, ddl in self.columns:
            add_column_if_absent(conn, table, column, ddl)


class Migration001AddTurnHead(AddColumnsMigration):
    columns = (("turns", "start_head_sha", "TEXT"),)

    @property
    def version(self) -> str:
        return "001"

    @property
    def description(self) -> str:
        return "Add start_head_sha to turns"


class Migration002AddToolInput(AddColumnsMigration):
    columns = (
        ("tool_executions", "tool_input", "TEXT"),
        ("tool_executions", "error_message", "TEXT"),
    )

    @property
    def version(self) -> str:
        return "002"

    @property
    def description(self) -> str:
        return "Add tool_input and error_message to tool_executions"


class Migration003AddCommitProvenance(AddColumnsMigration):
    columns = (
        ("commits", "data_source", "TEXT NOT NULL DEFAULT 'live_hook'"),
        ("commits", "remote_url", "TEXT"),
        ("commits", "discovered_at", "TEXT"),
    )

    @property
    def version(self) -> str:
        return "003"

    @property
    def description(self) -> str:
        return "Add data_source, remote_url and discovered_at to commits"


class Migration004AddPullRequestCI(AddColumnsMigration):
    columns = (
        ("pull_requests", "ci_status", "TEXT"),
        ("pull_requests", "checks_passed", "INTEGER NOT NULL DEFAULT 0"),
        ("pull_requests", "checks_failed", "INTEGER NOT NULL DEFAULT 0"),
        ("pull_requests", "head_sha", "TEXT"),
    )

    @property
    def version(self) -> str:
        return "004"

    @property
    def description(self) -> str:
        return "Add CI summary and head_sha to pull_requests"


class Migration005AddQualityRatings(AddColumnsMigration):
    columns = (
        ("quality_metrics", "technical_debt_minutes", "INTEGER"),
        ("quality_metrics", "reliability_rating", "INTEGER"),
        ("quality_metrics", "security_rating", "INTEGER"),
        ("quality_metrics", "maintainability_rating", "INTEGER"),
        ("quality_metrics", "raw_snippet", "TEXT"),
    )

    @property
    def version(self) -> str:
        return "005"

    @property
    def description(self) -> str:
        return "Add technical debt, ratings and raw_snippet to quality_metrics"


class Migration006AddCacheCosts(AddColumnsMigration):
    columns = (
        ("token_usage", "cache_write_cost_usd", "REAL NOT NULL DEFAULT 0"),
        ("token_usage", "cache_read_cost_usd", "REAL NOT NULL DEFAULT 0"),
        ("sessions", "total_cost_usd", "REAL NOT NULL DEFAULT 0"),
    )

    @property
    def version(self) -> str:
        return "006"

    @property
    def description(self) -> str:
        return "Add cache cost components to token_usage and total_cost_usd to sessions"


class MigrationRunner:
    """Applies the fixed migration list; failures never abort startup."""

    def __init__(self, db_path: Path, busy_timeout_ms: int = 5000):
        self.db_path = db_path
        self.busy_timeout_ms = busy_timeout_ms
        self.migrations: list[Migration] = [
            Migration001AddTurnHead(),
            Migration002AddToolInput(),
            Migration003AddCommitProvenance(),
            Migration004AddPullRequestCI(),
            Migration005AddQualityRatings(),
            Migration006AddCacheCosts(),
        ]

    def _get_db_connection(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.execute(f"PRAGMA busy_timeout = {int(self.busy_timeout_ms)}")
        return conn

    def _ensure_migrations_table(self, conn: sqlite3.Connection) -> None:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS _agentrace_migrations (
                version TEXT PRIMARY KEY,
                description TEXT NOT NULL,
                applied_at TEXT NOT NULL
            )
        """)

    def _is_migration_applied(self, conn: sqlite3.Connection, version: str) -> bool:
        cursor = conn.execute("SELECT 1 FROM _agentrace_migrations WHERE version = ?", (version,))
        return cursor.fetchone() is not None

    def _mark_migration_applied(self, conn: sqlite3.Connection, migration: Migration) -> None:
        conn.execute(
            "INSERT OR IGNORE INTO _agentrace_migrations (version, description, applied_at) VALUES (?, ?, ?)",
            (migration.version, migration.description, to_db(utcnow())),
        )

    def run_migrations(self) -> list[str]:
        """Run all pending migrations.

        Returns:
            "version: description" for each migration applied by this call.
        """
        applied_migrations: list[str] = []

        try:
            conn = self._get_db_connection()
        except sqlite3.Error as e:
            logger.error(str(SchemaDriftError(f"cannot open {self.db_path}: {e}")))
            return applied_migrations

        try:
            self._ensure_migrations_table(conn)
            conn.commit()

            for migration in self.migrations:
                try:
                    if self._is_migration_applied(conn, migration.version):
                        continue
                    migration.up(conn)
                    self._mark_migration_applied(conn, migration)
                    conn.commit()
                    applied_migrations.append(f"{migration.version}: {migration.description}")
                except sqlite3.Error as e:
                    conn.rollback()
                    drift = SchemaDriftError(f"migration {migration.version} failed: {e}")
                    logger.error(str(drift))
        except sqlite3.Error as e:
            logger.error(str(SchemaDriftError(f"migration bookkeeping failed: {e}")))
        finally:
            conn.close()

        return applied_migrations

    def get_migration_status(self) -> dict[str, Any]:
        """Get status of all migrations."""
        status: dict[str, Any] = {"applied": [], "pending": [], "total": len(self.migrations)}

        conn = self._get_db_connection()
        try:
            self._ensure_migrations_table(conn)
            for migration in self.migrations:
                migration_info = {"version": migration.version, "description": migration.description}
                row = conn.execute(
                    "SELECT applied_at FROM _agentrace_migrations WHERE version = ?", (migration.version,)
                ).fetchone()
                if row:
                    migration_info["applied_at"] = row[0]
                    status["applied"].append(migration_info)
                else:
                    status["pending"].append(migration_info)
        finally:
            conn.close()

        return status
