"""SQLite store gateway for sessions, tool calls, commits, PRs and costs.

All SQL lives here. Other components build value objects and hand them to
the gateway, composing multi-step state changes inside ``run_transaction``.
Methods that take a ``conn`` argument must be called from within a
transaction opened by ``run_transaction``.
"""

import json
import logging
import sqlite3
import time
from collections.abc import Callable, Generator
from contextlib import contextmanager
from datetime import datetime, timedelta
from pathlib import Path
from typing import TypeVar

from agentrace.core.errors import StoreBusyError
from agentrace.core.migrations import MigrationRunner
from agentrace.core.models import (
    CheckRun,
    CommitDataSource,
    CommitRecord,
    IntentRecord,
    PRDataSource,
    PullRequestRecord,
    QualityMetric,
    Session,
    SessionDetail,
    SessionSummary,
    TokenUsageRecord,
    ToolExecution,
    ToolStats,
    Turn,
)
from agentrace.core.settings import Settings, settings
from agentrace.core.timestamps import from_db, to_db

logger = logging.getLogger(__name__)

T = TypeVar("T")

TOOL_INPUT_MAX_CHARS = 4000


def _is_database_locked_error(error: Exception) -> bool:
    """Check if error is a SQLite database locked error."""
    error_str = str(error).lower()
    return "database is locked" in error_str or "database is busy" in error_str


class EventDatabase:
    """Manages the SQLite database shared by every hook and scan process."""

    def __init__(self, db_path: Path | None = None, config: Settings | None = None):
        self.config = config or settings
        if db_path is None:
            db_path = self.config.resolved_database_path
        else:
            db_path = Path(db_path)

        self.db_path = db_path.resolve()
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._sleep = time.sleep
        self._create_tables()
        self._run_migrations()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, isolation_level=None)
        conn.row_factory = sqlite3.Row
        conn.execute(f"PRAGMA busy_timeout = {int(self.config.store_busy_timeout_ms)}")
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA synchronous=NORMAL")
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    @contextmanager
    def _get_db_connection(self) -> Generator[sqlite3.Connection]:
        """Plain connection for schema setup and read-only queries."""
        conn = self._connect()
        try:
            yield conn
        finally:
            conn.close()

    def run_transaction(self, work: Callable[[sqlite3.Connection], T]) -> T:
        """Run ``work`` inside ``BEGIN EXCLUSIVE`` and commit.

        Lock contention is retried ``store_max_retries`` times with a linearly
        growing sleep. Any other error rolls back and propagates.

        Raises:
            StoreBusyError: the store stayed locked through every retry.
        """
        max_retries = max(0, self.config.store_max_retries)
        last_error: Exception | None = None

        for attempt in range(max_retries + 1):
            conn: sqlite3.Connection | None = None
            try:
                conn = self._connect()
                conn.execute("BEGIN EXCLUSIVE")
                try:
                    result = work(conn)
                    conn.execute("COMMIT")
                    return result
                except Exception:
                    if conn.in_transaction:
                        conn.execute("ROLLBACK")
                    raise
            except sqlite3.OperationalError as e:
                if not _is_database_locked_error(e):
                    raise
                last_error = e
                if attempt < max_retries:
                    delay = self.config.store_retry_base_delay + attempt * self.config.store_retry_step
                    logger.warning(f"Store locked, retry {attempt + 1}/{max_retries} in {delay:.2f}s")
                    self._sleep(delay)
            finally:
                if conn is not None:
                    conn.close()

        raise StoreBusyError(max_retries + 1, last_error)

    def read(self, work: Callable[[sqlite3.Connection], T]) -> T:
        """Run read-only ``work`` on a plain connection, without taking the write lock."""
        with self._get_db_connection() as conn:
            return work(conn)

    def _run_migrations(self) -> None:
        """Run any pending database migrations."""
        migration_runner = MigrationRunner(self.db_path, busy_timeout_ms=self.config.store_busy_timeout_ms)
        applied_migrations = migration_runner.run_migrations()

        if applied_migrations:
            logger.debug(f"Applied migrations: {applied_migrations}")

    def _create_tables(self) -> None:
        """Create database tables."""
        with self._get_db_connection() as conn:
            conn.executescript("""
                CREATE TABLE IF NOT EXISTS sessions (
                    session_id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    started_at TEXT NOT NULL,
                    last_activity_at TEXT NOT NULL,
                    cwd TEXT,
                    transcript_path TEXT,
                    total_turns INTEGER NOT NULL DEFAULT 0,
                    total_tools_used INTEGER NOT NULL DEFAULT 0,
                    total_interruptions INTEGER NOT NULL DEFAULT 0,
                    total_cost_usd REAL NOT NULL DEFAULT 0
                );

                CREATE TABLE IF NOT EXISTS turns (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    session_id TEXT NOT NULL,
                    turn_number INTEGER NOT NULL,
                    started_at TEXT NOT NULL,
                    ended_at TEXT,
                    was_interrupted INTEGER NOT NULL DEFAULT 0,
                    interrupted_at TEXT,
                    start_head_sha TEXT,
                    UNIQUE(session_id, turn_number)
                );
                CREATE INDEX IF NOT EXISTS idx_turns_open ON turns(session_id, ended_at);

                CREATE TABLE IF NOT EXISTS tool_executions (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    session_id TEXT NOT NULL,
                    turn_number INTEGER,
                    tool_name TEXT NOT NULL,
                    tool_input TEXT,
                    started_at TEXT NOT NULL,
                    completed_at TEXT,
                    success INTEGER,
                    error_message TEXT,
                    duration_ms INTEGER,
                    sequence_number INTEGER NOT NULL,
                    previous_tool TEXT
                );
                CREATE INDEX IF NOT EXISTS idx_tool_exec_session_seq
                    ON tool_executions(session_id, sequence_number);
                CREATE INDEX IF NOT EXISTS idx_tool_exec_open
                    ON tool_executions(session_id, tool_name, completed_at);

                CREATE TABLE IF NOT EXISTS tool_stats (
                    tool_name TEXT PRIMARY KEY,
                    total_calls INTEGER NOT NULL DEFAULT 0,
                    success_count INTEGER NOT NULL DEFAULT 0,
                    failure_count INTEGER NOT NULL DEFAULT 0,
                    avg_duration_ms REAL NOT NULL DEFAULT 0,
                    success_rate REAL NOT NULL DEFAULT 0,
                    last_used_at TEXT
                );

                CREATE TABLE IF NOT EXISTS intent_records (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    session_id TEXT NOT NULL,
                    turn_number INTEGER NOT NULL,
                    intent TEXT NOT NULL,
                    confidence REAL NOT NULL,
                    prompt TEXT,
                    signals TEXT NOT NULL DEFAULT '[]',
                    created_at TEXT NOT NULL,
                    UNIQUE(session_id, turn_number)
                );

                CREATE TABLE IF NOT EXISTS commits (
                    sha TEXT PRIMARY KEY,
                    repository TEXT NOT NULL,
                    branch TEXT,
                    message TEXT,
                    author_name TEXT,
                    author_email TEXT,
                    committed_at TEXT,
                    files_changed INTEGER NOT NULL DEFAULT 0,
                    insertions INTEGER NOT NULL DEFAULT 0,
                    deletions INTEGER NOT NULL DEFAULT 0,
                    pr_number INTEGER,
                    session_id TEXT,
                    turn_number INTEGER,
                    remote_url TEXT,
                    data_source TEXT NOT NULL DEFAULT 'live_hook',
                    discovered_at TEXT
                );
                CREATE INDEX IF NOT EXISTS idx_commits_repo_branch ON commits(repository, branch);
                CREATE INDEX IF NOT EXISTS idx_commits_session ON commits(session_id);

                CREATE TABLE IF NOT EXISTS pull_requests (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    repository TEXT NOT NULL,
                    number INTEGER NOT NULL,
                    title TEXT,
                    head_branch TEXT,
                    base_branch TEXT,
                    state TEXT,
                    is_merged INTEGER NOT NULL DEFAULT 0,
                    author TEXT,
                    url TEXT,
                    head_sha TEXT,
                    created_at TEXT,
                    merged_at TEXT,
                    additions INTEGER NOT NULL DEFAULT 0,
                    deletions INTEGER NOT NULL DEFAULT 0,
                    changed_files INTEGER NOT NULL DEFAULT 0,
                    session_id TEXT,
                    data_source TEXT NOT NULL,
                    ci_status TEXT,
                    checks_passed INTEGER NOT NULL DEFAULT 0,
                    checks_failed INTEGER NOT NULL DEFAULT 0,
                    fetched_at TEXT,
                    UNIQUE(repository, number)
                );
                CREATE INDEX IF NOT EXISTS idx_pull_requests_session ON pull_requests(session_id, created_at);

                CREATE TABLE IF NOT EXISTS pr_checks (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    repository TEXT NOT NULL,
                    pr_number INTEGER NOT NULL,
                    name TEXT NOT NULL,
                    status TEXT,
                    conclusion TEXT,
                    started_at TEXT,
                    completed_at TEXT,
                    details_url TEXT,
                    check_run_id INTEGER,
                    source TEXT NOT NULL,
                    UNIQUE(repository, pr_number, name, source)
                );

                CREATE TABLE IF NOT EXISTS commit_checks (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    commit_sha TEXT NOT NULL,
                    name TEXT NOT NULL,
                    status TEXT,
                    conclusion TEXT,
                    started_at TEXT,
                    completed_at TEXT,
                    details_url TEXT,
                    check_run_id INTEGER,
                    source TEXT NOT NULL,
                    UNIQUE(commit_sha, name, source)
                );

                CREATE TABLE IF NOT EXISTS quality_metrics (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    repository TEXT NOT NULL,
                    pr_number INTEGER NOT NULL,
                    commit_sha TEXT,
                    session_id TEXT,
                    source TEXT NOT NULL,
                    quality_gate_status TEXT,
                    bugs_total INTEGER,
                    vulnerabilities_total INTEGER,
                    security_hotspots_total INTEGER,
                    code_smells_total INTEGER,
                    duplicated_lines_density REAL,
                    coverage_percent REAL,
                    technical_debt_minutes INTEGER,
                    reliability_rating INTEGER,
                    security_rating INTEGER,
                    maintainability_rating INTEGER,
                    raw_snippet TEXT,
                    captured_at TEXT NOT NULL,
                    UNIQUE(repository, pr_number, source)
                );

                CREATE TABLE IF NOT EXISTS token_usage (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    message_id TEXT NOT NULL UNIQUE,
                    session_id TEXT NOT NULL,
                    turn_number INTEGER,
                    model TEXT,
                    timestamp TEXT,
                    input_tokens INTEGER NOT NULL DEFAULT 0,
                    output_tokens INTEGER NOT NULL DEFAULT 0,
                    cache_creation_tokens INTEGER NOT NULL DEFAULT 0,
                    cache_read_tokens INTEGER NOT NULL DEFAULT 0,
                    input_cost_usd REAL NOT NULL DEFAULT 0,
                    output_cost_usd REAL NOT NULL DEFAULT 0,
                    cache_write_cost_usd REAL NOT NULL DEFAULT 0,
                    cache_read_cost_usd REAL NOT NULL DEFAULT 0,
                    total_cost_usd REAL NOT NULL DEFAULT 0
                );
                CREATE INDEX IF NOT EXISTS idx_token_usage_session_ts ON token_usage(session_id, timestamp);
            """)

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def ensure_session(
        self,
        conn: sqlite3.Connection,
        session_id: str,
        now: datetime,
        cwd: str | None = None,
        transcript_path: str | None = None,
    ) -> bool:
        """Create the session row if missing and bump its activity time.

        Returns:
            True if the session was created by this call.
        """
        cursor = conn.execute(
            """
            INSERT OR IGNORE INTO sessions (session_id, user_id, started_at, last_activity_at, cwd, transcript_path)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (session_id, self.config.user_id, to_db(now), to_db(now), cwd, transcript_path),
        )
        created = cursor.rowcount == 1
        if not created:
            conn.execute(
                """
                UPDATE sessions
                SET last_activity_at = ?,
                    cwd = COALESCE(cwd, ?),
                    transcript_path = COALESCE(?, transcript_path)
                WHERE session_id = ?
                """,
                (to_db(now), cwd, transcript_path, session_id),
            )
        return created

    def increment_session_counters(
        self, conn: sqlite3.Connection, session_id: str, turns: int = 0, tools: int = 0, interruptions: int = 0
    ) -> None:
        conn.execute(
            """
            UPDATE sessions
            SET total_turns = total_turns + ?,
                total_tools_used = total_tools_used + ?,
                total_interruptions = total_interruptions + ?
            WHERE session_id = ?
            """,
            (turns, tools, interruptions, session_id),
        )

    def get_session(self, conn: sqlite3.Connection, session_id: str) -> Session | None:
        row = conn.execute("SELECT * FROM sessions WHERE session_id = ?", (session_id,)).fetchone()
        return _row_to_session(row) if row else None

    # ------------------------------------------------------------------
    # Turns
    # ------------------------------------------------------------------

    def get_open_turn(self, conn: sqlite3.Connection, session_id: str) -> Turn | None:
        row = conn.execute(
            """
            SELECT * FROM turns
            WHERE session_id = ? AND ended_at IS NULL
            ORDER BY turn_number DESC
            LIMIT 1
            """,
            (session_id,),
        ).fetchone()
        return _row_to_turn(row) if row else None

    def get_latest_turn(self, conn: sqlite3.Connection, session_id: str) -> Turn | None:
        row = conn.execute(
            "SELECT * FROM turns WHERE session_id = ? ORDER BY turn_number DESC LIMIT 1",
            (session_id,),
        ).fetchone()
        return _row_to_turn(row) if row else None

    def next_turn_number(self, conn: sqlite3.Connection, session_id: str) -> int:
        row = conn.execute("SELECT MAX(turn_number) FROM turns WHERE session_id = ?", (session_id,)).fetchone()
        return (row[0] or 0) + 1

    def insert_turn(self, conn: sqlite3.Connection, turn: Turn) -> int:
        cursor = conn.execute(
            """
            INSERT INTO turns (session_id, turn_number, started_at, start_head_sha)
            VALUES (?, ?, ?, ?)
            """,
            (turn.session_id, turn.turn_number, to_db(turn.started_at), turn.start_head_sha),
        )
        return cursor.lastrowid or 0

    def close_turn(self, conn: sqlite3.Connection, turn_id: int, ended_at: datetime, interrupted: bool) -> None:
        conn.execute(
            """
            UPDATE turns
            SET ended_at = ?, was_interrupted = ?, interrupted_at = ?
            WHERE id = ? AND ended_at IS NULL
            """,
            (to_db(ended_at), 1 if interrupted else 0, to_db(ended_at) if interrupted else None, turn_id),
        )

    def find_turn_number_at(self, conn: sqlite3.Connection, session_id: str, at: datetime | None) -> int | None:
        """Turn whose [started_at, ended_at) window contains ``at``."""
        if at is None:
            return None
        row = conn.execute(
            """
            SELECT turn_number FROM turns
            WHERE session_id = ? AND started_at <= ? AND (ended_at IS NULL OR ended_at > ?)
            ORDER BY turn_number DESC
            LIMIT 1
            """,
            (session_id, to_db(at), to_db(at)),
        ).fetchone()
        return row[0] if row else None

    def insert_intent(self, conn: sqlite3.Connection, record: IntentRecord) -> None:
        conn.execute(
            """
            INSERT OR IGNORE INTO intent_records
                (session_id, turn_number, intent, confidence, prompt, signals, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                record.session_id,
                record.turn_number,
                record.intent.value,
                record.confidence,
                record.prompt,
                json.dumps(record.signals),
                to_db(record.created_at),
            ),
        )

    # ------------------------------------------------------------------
    # Tool executions
    # ------------------------------------------------------------------

    def next_tool_sequence(self, conn: sqlite3.Connection, session_id: str) -> int:
        row = conn.execute(
            "SELECT MAX(sequence_number) FROM tool_executions WHERE session_id = ?", (session_id,)
        ).fetchone()
        return (row[0] or 0) + 1

    def last_started_tool_name(self, conn: sqlite3.Connection, session_id: str) -> str | None:
        row = conn.execute(
            """
            SELECT tool_name FROM tool_executions
            WHERE session_id = ?
            ORDER BY sequence_number DESC
            LIMIT 1
            """,
            (session_id,),
        ).fetchone()
        return row[0] if row else None

    def insert_tool_execution(self, conn: sqlite3.Connection, execution: ToolExecution) -> int:
        tool_input = execution.tool_input
        if tool_input is not None and len(tool_input) > TOOL_INPUT_MAX_CHARS:
            tool_input = tool_input[:TOOL_INPUT_MAX_CHARS]
        cursor = conn.execute(
            """
            INSERT INTO tool_executions
                (session_id, turn_number, tool_name, tool_input, started_at, sequence_number, previous_tool)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                execution.session_id,
                execution.turn_number,
                execution.tool_name,
                tool_input,
                to_db(execution.started_at),
                execution.sequence_number,
                execution.previous_tool,
            ),
        )
        return cursor.lastrowid or 0

    def find_open_tool_execution(
        self, conn: sqlite3.Connection, session_id: str, tool_name: str
    ) -> ToolExecution | None:
        """Most recently started execution of ``tool_name`` still awaiting its result."""
        row = conn.execute(
            """
            SELECT * FROM tool_executions
            WHERE session_id = ? AND tool_name = ? AND completed_at IS NULL
            ORDER BY sequence_number DESC
            LIMIT 1
            """,
            (session_id, tool_name),
        ).fetchone()
        return _row_to_tool_execution(row) if row else None

    def complete_tool_execution(
        self,
        conn: sqlite3.Connection,
        execution_id: int,
        completed_at: datetime,
        success: bool,
        duration_ms: int,
        error_message: str | None = None,
    ) -> None:
        conn.execute(
            """
            UPDATE tool_executions
            SET completed_at = ?, success = ?, duration_ms = ?, error_message = ?
            WHERE id = ?
            """,
            (to_db(completed_at), 1 if success else 0, duration_ms, error_message, execution_id),
        )

    def get_tool_stats(self, conn: sqlite3.Connection, tool_name: str) -> ToolStats | None:
        row = conn.execute("SELECT * FROM tool_stats WHERE tool_name = ?", (tool_name,)).fetchone()
        return _row_to_tool_stats(row) if row else None

    def save_tool_stats(self, conn: sqlite3.Connection, stats: ToolStats) -> None:
        conn.execute(
            """
            INSERT INTO tool_stats
                (tool_name, total_calls, success_count, failure_count, avg_duration_ms, success_rate, last_used_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(tool_name) DO UPDATE SET
                total_calls = excluded.total_calls,
                success_count = excluded.success_count,
                failure_count = excluded.failure_count,
                avg_duration_ms = excluded.avg_duration_ms,
                success_rate = excluded.success_rate,
                last_used_at = excluded.last_used_at
            """,
            (
                stats.tool_name,
                stats.total_calls,
                stats.success_count,
                stats.failure_count,
                stats.avg_duration_ms,
                stats.success_rate,
                to_db(stats.last_used_at),
            ),
        )

    def find_session_for_commit(
        self,
        conn: sqlite3.Connection,
        repo_root: str,
        committed_at: datetime | None,
        before: timedelta = timedelta(seconds=5),
        after: timedelta = timedelta(seconds=60),
    ) -> tuple[str, int | None] | None:
        """Session whose ``git commit`` Bash call in ``repo_root`` brackets ``committed_at``."""
        if committed_at is None:
            return None
        row = conn.execute(
            """
            SELECT te.session_id, te.turn_number
            FROM tool_executions te
            JOIN sessions s ON s.session_id = te.session_id
            WHERE te.tool_name = 'Bash'
              AND te.tool_input LIKE '%git commit%'
              AND (s.cwd = ? OR s.cwd LIKE ?)
              AND te.started_at <= ?
              AND COALESCE(te.completed_at, te.started_at) >= ?
            ORDER BY te.started_at DESC
            LIMIT 1
            """,
            (
                repo_root,
                repo_root.rstrip("/") + "/%",
                to_db(committed_at + before),
                to_db(committed_at - after),
            ),
        ).fetchone()
        if not row:
            return None
        return row[0], row[1]

    # ------------------------------------------------------------------
    # Commits
    # ------------------------------------------------------------------

    def commit_exists(self, conn: sqlite3.Connection, sha: str) -> bool:
        return conn.execute("SELECT 1 FROM commits WHERE sha = ?", (sha,)).fetchone() is not None

    def insert_commit(self, conn: sqlite3.Connection, commit: CommitRecord) -> bool:
        """Insert a commit unless its SHA is already tracked.

        Returns:
            True if a row was inserted.
        """
        cursor = conn.execute(
            """
            INSERT OR IGNORE INTO commits (
                sha, repository, branch, message, author_name, author_email, committed_at,
                files_changed, insertions, deletions, pr_number, session_id, turn_number,
                remote_url, data_source, discovered_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                commit.sha,
                commit.repository,
                commit.branch,
                commit.message,
                commit.author_name,
                commit.author_email,
                to_db(commit.committed_at),
                commit.files_changed,
                commit.insertions,
                commit.deletions,
                commit.pr_number,
                commit.session_id,
                commit.turn_number,
                commit.remote_url,
                commit.data_source.value,
                to_db(commit.discovered_at),
            ),
        )
        return cursor.rowcount == 1

    def get_commit(self, conn: sqlite3.Connection, sha: str) -> CommitRecord | None:
        row = conn.execute("SELECT * FROM commits WHERE sha = ?", (sha,)).fetchone()
        return _row_to_commit(row) if row else None

    def link_commits_to_pr(
        self, conn: sqlite3.Connection, repository: str, pr_number: int, branch: str | None, shas: list[str]
    ) -> int:
        """Attach commits to a PR by head branch and by exact SHA.

        Only ``pr_number`` is written; attribution columns are never touched.
        """
        linked = 0
        if branch:
            cursor = conn.execute(
                """
                UPDATE commits SET pr_number = ?
                WHERE repository = ? AND branch = ? AND pr_number IS NULL
                """,
                (pr_number, repository, branch),
            )
            linked += cursor.rowcount
        for sha in shas:
            cursor = conn.execute(
                "UPDATE commits SET pr_number = ? WHERE sha = ? AND (pr_number IS NULL OR pr_number != ?)",
                (pr_number, sha, pr_number),
            )
            linked += cursor.rowcount
        return linked

    def get_pr_commits(self, conn: sqlite3.Connection, repository: str, pr_number: int) -> list[CommitRecord]:
        rows = conn.execute(
            "SELECT * FROM commits WHERE repository = ? AND pr_number = ? ORDER BY committed_at",
            (repository, pr_number),
        ).fetchall()
        return [_row_to_commit(row) for row in rows]

    # ------------------------------------------------------------------
    # Pull requests and checks
    # ------------------------------------------------------------------

    def upsert_pull_request(self, conn: sqlite3.Connection, pr: PullRequestRecord) -> None:
        """Replace the fetched fields of a PR while keeping its attribution."""
        conn.execute(
            """
            INSERT INTO pull_requests (
                repository, number, title, head_branch, base_branch, state, is_merged, author, url,
                head_sha, created_at, merged_at, additions, deletions, changed_files, session_id,
                data_source, ci_status, checks_passed, checks_failed, fetched_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(repository, number) DO UPDATE SET
                title = excluded.title,
                head_branch = excluded.head_branch,
                base_branch = excluded.base_branch,
                state = excluded.state,
                is_merged = excluded.is_merged,
                author = excluded.author,
                url = excluded.url,
                head_sha = excluded.head_sha,
                created_at = COALESCE(excluded.created_at, pull_requests.created_at),
                merged_at = excluded.merged_at,
                additions = excluded.additions,
                deletions = excluded.deletions,
                changed_files = excluded.changed_files,
                session_id = COALESCE(pull_requests.session_id, excluded.session_id),
                data_source = CASE
                    WHEN pull_requests.data_source = 'claude' THEN 'claude'
                    ELSE excluded.data_source
                END,
                ci_status = excluded.ci_status,
                checks_passed = excluded.checks_passed,
                checks_failed = excluded.checks_failed,
                fetched_at = excluded.fetched_at
            """,
            (
                pr.repository,
                pr.number,
                pr.title,
                pr.head_branch,
                pr.base_branch,
                pr.state,
                1 if pr.is_merged else 0,
                pr.author,
                pr.url,
                pr.head_sha,
                to_db(pr.created_at),
                to_db(pr.merged_at),
                pr.additions,
                pr.deletions,
                pr.changed_files,
                pr.session_id,
                pr.data_source.value,
                pr.ci_status,
                pr.checks_passed,
                pr.checks_failed,
                to_db(pr.fetched_at),
            ),
        )

    def get_pull_request(self, conn: sqlite3.Connection, repository: str, number: int) -> PullRequestRecord | None:
        row = conn.execute(
            "SELECT * FROM pull_requests WHERE repository = ? AND number = ?", (repository, number)
        ).fetchone()
        return _row_to_pull_request(row) if row else None

    def classify_scanned_pr(self, conn: sqlite3.Connection, repository: str, number: int) -> PRDataSource | None:
        """Mark a scan-discovered PR as human unless one of its commits is assistant-authored."""
        row = conn.execute(
            "SELECT data_source, session_id FROM pull_requests WHERE repository = ? AND number = ?",
            (repository, number),
        ).fetchone()
        if row is None:
            return None
        if row["data_source"] == PRDataSource.CLAUDE.value:
            return PRDataSource.CLAUDE

        assistant = conn.execute(
            """
            SELECT session_id FROM commits
            WHERE repository = ? AND pr_number = ? AND session_id IS NOT NULL
            ORDER BY committed_at
            LIMIT 1
            """,
            (repository, number),
        ).fetchone()
        if assistant:
            data_source = PRDataSource.BACKGROUND
            session_id = row["session_id"] or assistant["session_id"]
        else:
            data_source = PRDataSource.HUMAN
            session_id = row["session_id"]

        conn.execute(
            "UPDATE pull_requests SET data_source = ?, session_id = ? WHERE repository = ? AND number = ?",
            (data_source.value, session_id, repository, number),
        )
        return data_source

    def replace_pr_checks(self, conn: sqlite3.Connection, repository: str, pr_number: int, checks: list[CheckRun]) -> None:
        conn.execute("DELETE FROM pr_checks WHERE repository = ? AND pr_number = ?", (repository, pr_number))
        for check in checks:
            conn.execute(
                """
                INSERT OR REPLACE INTO pr_checks (
                    repository, pr_number, name, status, conclusion, started_at, completed_at,
                    details_url, check_run_id, source
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    repository,
                    pr_number,
                    check.name,
                    check.status,
                    check.conclusion,
                    to_db(check.started_at),
                    to_db(check.completed_at),
                    check.details_url,
                    check.check_run_id,
                    check.source.value,
                ),
            )

    def replace_commit_checks(self, conn: sqlite3.Connection, commit_sha: str, checks: list[CheckRun]) -> None:
        conn.execute("DELETE FROM commit_checks WHERE commit_sha = ?", (commit_sha,))
        for check in checks:
            conn.execute(
                """
                INSERT OR REPLACE INTO commit_checks (
                    commit_sha, name, status, conclusion, started_at, completed_at,
                    details_url, check_run_id, source
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    commit_sha,
                    check.name,
                    check.status,
                    check.conclusion,
                    to_db(check.started_at),
                    to_db(check.completed_at),
                    check.details_url,
                    check.check_run_id,
                    check.source.value,
                ),
            )

    def get_pr_checks(self, conn: sqlite3.Connection, repository: str, pr_number: int) -> list[CheckRun]:
        rows = conn.execute(
            "SELECT * FROM pr_checks WHERE repository = ? AND pr_number = ? ORDER BY name",
            (repository, pr_number),
        ).fetchall()
        return [_row_to_check(row) for row in rows]

    def get_commit_checks(self, conn: sqlite3.Connection, commit_sha: str) -> list[CheckRun]:
        rows = conn.execute(
            "SELECT * FROM commit_checks WHERE commit_sha = ? ORDER BY name", (commit_sha,)
        ).fetchall()
        return [_row_to_check(row) for row in rows]

    def upsert_quality_metric(self, conn: sqlite3.Connection, metric: QualityMetric) -> None:
        conn.execute(
            """
            INSERT INTO quality_metrics (
                repository, pr_number, commit_sha, session_id, source, quality_gate_status,
                bugs_total, vulnerabilities_total, security_hotspots_total, code_smells_total,
                duplicated_lines_density, coverage_percent, technical_debt_minutes,
                reliability_rating, security_rating, maintainability_rating, raw_snippet, captured_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(repository, pr_number, source) DO UPDATE SET
                commit_sha = excluded.commit_sha,
                session_id = COALESCE(quality_metrics.session_id, excluded.session_id),
                quality_gate_status = excluded.quality_gate_status,
                bugs_total = excluded.bugs_total,
                vulnerabilities_total = excluded.vulnerabilities_total,
                security_hotspots_total = excluded.security_hotspots_total,
                code_smells_total = excluded.code_smells_total,
                duplicated_lines_density = excluded.duplicated_lines_density,
                coverage_percent = excluded.coverage_percent,
                technical_debt_minutes = excluded.technical_debt_minutes,
                reliability_rating = excluded.reliability_rating,
                security_rating = excluded.security_rating,
                maintainability_rating = excluded.maintainability_rating,
                raw_snippet = excluded.raw_snippet,
                captured_at = excluded.captured_at
            """,
            (
                metric.repository,
                metric.pr_number,
                metric.commit_sha,
                metric.session_id,
                metric.source.value,
                metric.quality_gate_status,
                metric.bugs_total,
                metric.vulnerabilities_total,
                metric.security_hotspots_total,
                metric.code_smells_total,
                metric.duplicated_lines_density,
                metric.coverage_percent,
                metric.technical_debt_minutes,
                metric.reliability_rating,
                metric.security_rating,
                metric.maintainability_rating,
                metric.raw_snippet,
                to_db(metric.captured_at),
            ),
        )

    def get_quality_metrics(self, conn: sqlite3.Connection, repository: str, pr_number: int) -> list[QualityMetric]:
        rows = conn.execute(
            "SELECT * FROM quality_metrics WHERE repository = ? AND pr_number = ? ORDER BY captured_at DESC",
            (repository, pr_number),
        ).fetchall()
        return [QualityMetric.model_validate({**dict(row), "captured_at": from_db(row["captured_at"])}) for row in rows]

    # ------------------------------------------------------------------
    # Token usage and cost
    # ------------------------------------------------------------------

    def insert_token_usage(self, conn: sqlite3.Connection, record: TokenUsageRecord) -> bool:
        cursor = conn.execute(
            """
            INSERT OR IGNORE INTO token_usage (
                message_id, session_id, turn_number, model, timestamp,
                input_tokens, output_tokens, cache_creation_tokens, cache_read_tokens,
                input_cost_usd, output_cost_usd, cache_write_cost_usd, cache_read_cost_usd, total_cost_usd
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                record.message_id,
                record.session_id,
                record.turn_number,
                record.model,
                to_db(record.timestamp),
                record.input_tokens,
                record.output_tokens,
                record.cache_creation_tokens,
                record.cache_read_tokens,
                record.input_cost_usd,
                record.output_cost_usd,
                record.cache_write_cost_usd,
                record.cache_read_cost_usd,
                record.total_cost_usd,
            ),
        )
        return cursor.rowcount == 1

    def refresh_session_cost(self, conn: sqlite3.Connection, session_id: str) -> float:
        row = conn.execute(
            "SELECT COALESCE(SUM(total_cost_usd), 0) FROM token_usage WHERE session_id = ?", (session_id,)
        ).fetchone()
        total = float(row[0])
        conn.execute("UPDATE sessions SET total_cost_usd = ? WHERE session_id = ?", (total, session_id))
        return total

    def sum_token_usage(
        self, conn: sqlite3.Connection, session_id: str, start: datetime | None = None, end: datetime | None = None
    ) -> tuple[float, int, int]:
        """(cost, tokens, messages) for a session, optionally within [start, end)."""
        query = """
            SELECT COALESCE(SUM(total_cost_usd), 0),
                   COALESCE(SUM(input_tokens + output_tokens + cache_creation_tokens + cache_read_tokens), 0),
                   COUNT(*)
            FROM token_usage
            WHERE session_id = ?
        """
        params: list = [session_id]
        if start is not None:
            query += " AND timestamp >= ?"
            params.append(to_db(start))
        if end is not None:
            query += " AND timestamp < ?"
            params.append(to_db(end))
        row = conn.execute(query, params).fetchone()
        return float(row[0]), int(row[1]), int(row[2])

    def turn_usage(self, conn: sqlite3.Connection, session_id: str) -> list[tuple[int | None, int, int, float]]:
        rows = conn.execute(
            """
            SELECT turn_number,
                   COUNT(*),
                   SUM(input_tokens + output_tokens + cache_creation_tokens + cache_read_tokens),
                   SUM(total_cost_usd)
            FROM token_usage
            WHERE session_id = ?
            GROUP BY turn_number
            ORDER BY turn_number
            """,
            (session_id,),
        ).fetchall()
        return [(row[0], int(row[1]), int(row[2] or 0), float(row[3] or 0.0)) for row in rows]

    def get_session_pull_requests(self, conn: sqlite3.Connection, session_id: str) -> list[PullRequestRecord]:
        rows = conn.execute(
            """
            SELECT * FROM pull_requests
            WHERE session_id = ? AND created_at IS NOT NULL
            ORDER BY created_at
            """,
            (session_id,),
        ).fetchall()
        return [_row_to_pull_request(row) for row in rows]

    # ------------------------------------------------------------------
    # Read-only reporting
    # ------------------------------------------------------------------

    def list_sessions(self, limit: int | None = None) -> list[str]:
        with self._get_db_connection() as conn:
            query = "SELECT session_id FROM sessions ORDER BY last_activity_at DESC"
            if limit:
                query += f" LIMIT {int(limit)}"
            return [row[0] for row in conn.execute(query).fetchall()]

    def get_sessions_summary(self, limit: int | None = None) -> list[SessionSummary]:
        with self._get_db_connection() as conn:
            query = """
                SELECT s.*, (SELECT COUNT(*) FROM commits c WHERE c.session_id = s.session_id) AS commits
                FROM sessions s
                ORDER BY s.last_activity_at DESC
            """
            if limit:
                query += f" LIMIT {int(limit)}"
            rows = conn.execute(query).fetchall()
            return [
                SessionSummary(
                    session_id=row["session_id"],
                    started_at=from_db(row["started_at"]),
                    last_activity_at=from_db(row["last_activity_at"]),
                    cwd=row["cwd"],
                    total_turns=row["total_turns"],
                    total_tools_used=row["total_tools_used"],
                    total_interruptions=row["total_interruptions"],
                    commits=row["commits"],
                    total_cost_usd=row["total_cost_usd"],
                )
                for row in rows
            ]

    def get_session_detail(self, session_id: str) -> SessionDetail | None:
        with self._get_db_connection() as conn:
            session = self.get_session(conn, session_id)
            if session is None:
                return None
            turns = [
                _row_to_turn(row)
                for row in conn.execute(
                    "SELECT * FROM turns WHERE session_id = ? ORDER BY turn_number", (session_id,)
                ).fetchall()
            ]
            tool_counts = {
                row[0]: row[1]
                for row in conn.execute(
                    """
                    SELECT tool_name, COUNT(*) FROM tool_executions
                    WHERE session_id = ? GROUP BY tool_name ORDER BY COUNT(*) DESC
                    """,
                    (session_id,),
                ).fetchall()
            }
            intents = {
                row[0]: row[1]
                for row in conn.execute(
                    "SELECT turn_number, intent FROM intent_records WHERE session_id = ?", (session_id,)
                ).fetchall()
            }
            commits = conn.execute("SELECT COUNT(*) FROM commits WHERE session_id = ?", (session_id,)).fetchone()[0]
            return SessionDetail(
                session=session,
                turns=turns,
                tool_counts=tool_counts,
                intents=intents,
                commits=commits,
                total_cost_usd=session_total_cost(conn, session_id),
            )

    def get_session_tool_executions(self, session_id: str) -> list[ToolExecution]:
        with self._get_db_connection() as conn:
            rows = conn.execute(
                "SELECT * FROM tool_executions WHERE session_id = ? ORDER BY sequence_number", (session_id,)
            ).fetchall()
            return [_row_to_tool_execution(row) for row in rows]

    def list_tool_stats(self) -> list[ToolStats]:
        with self._get_db_connection() as conn:
            rows = conn.execute("SELECT * FROM tool_stats ORDER BY total_calls DESC").fetchall()
            return [_row_to_tool_stats(row) for row in rows]

    def list_pull_requests(self, repository: str | None = None, limit: int = 50) -> list[PullRequestRecord]:
        with self._get_db_connection() as conn:
            if repository:
                rows = conn.execute(
                    "SELECT * FROM pull_requests WHERE repository = ? ORDER BY number DESC LIMIT ?",
                    (repository, limit),
                ).fetchall()
            else:
                rows = conn.execute(
                    "SELECT * FROM pull_requests ORDER BY fetched_at DESC LIMIT ?", (limit,)
                ).fetchall()
            return [_row_to_pull_request(row) for row in rows]

    def list_commits(self, repository: str | None = None, limit: int = 100) -> list[CommitRecord]:
        with self._get_db_connection() as conn:
            if repository:
                rows = conn.execute(
                    "SELECT * FROM commits WHERE repository = ? ORDER BY committed_at DESC LIMIT ?",
                    (repository, limit),
                ).fetchall()
            else:
                rows = conn.execute("SELECT * FROM commits ORDER BY committed_at DESC LIMIT ?", (limit,)).fetchall()
            return [_row_to_commit(row) for row in rows]


def session_total_cost(conn: sqlite3.Connection, session_id: str) -> float:
    row = conn.execute(
        "SELECT COALESCE(SUM(total_cost_usd), 0) FROM token_usage WHERE session_id = ?", (session_id,)
    ).fetchone()
    return float(row[0])


def _row_to_session(row: sqlite3.Row) -> Session:
    return Session(
        session_id=row["session_id"],
        user_id=row["user_id"],
        started_at=from_db(row["started_at"]),
        last_activity_at=from_db(row["last_activity_at"]),
        cwd=row["cwd"],
        transcript_path=row["transcript_path"],
        total_turns=row["total_turns"],
        total_tools_used=row["total_tools_used"],
        total_interruptions=row["total_interruptions"],
    )


def _row_to_turn(row: sqlite3.Row) -> Turn:
    return Turn(
        id=row["id"],
        session_id=row["session_id"],
        turn_number=row["turn_number"],
        started_at=from_db(row["started_at"]),
        ended_at=from_db(row["ended_at"]),
        was_interrupted=bool(row["was_interrupted"]),
        interrupted_at=from_db(row["interrupted_at"]),
        start_head_sha=row["start_head_sha"],
    )


def _row_to_tool_execution(row: sqlite3.Row) -> ToolExecution:
    return ToolExecution(
        id=row["id"],
        session_id=row["session_id"],
        turn_number=row["turn_number"],
        tool_name=row["tool_name"],
        tool_input=row["tool_input"],
        started_at=from_db(row["started_at"]),
        completed_at=from_db(row["completed_at"]),
        success=None if row["success"] is None else bool(row["success"]),
        error_message=row["error_message"],
        duration_ms=row["duration_ms"],
        sequence_number=row["sequence_number"],
        previous_tool=row["previous_tool"],
    )


def _row_to_tool_stats(row: sqlite3.Row) -> ToolStats:
    return ToolStats(
        tool_name=row["tool_name"],
        total_calls=row["total_calls"],
        success_count=row["success_count"],
        failure_count=row["failure_count"],
        avg_duration_ms=row["avg_duration_ms"],
        success_rate=row["success_rate"],
        last_used_at=from_db(row["last_used_at"]),
    )


def _row_to_commit(row: sqlite3.Row) -> CommitRecord:
    return CommitRecord(
        sha=row["sha"],
        repository=row["repository"],
        branch=row["branch"],
        message=row["message"] or "",
        author_name=row["author_name"] or "",
        author_email=row["author_email"] or "",
        committed_at=from_db(row["committed_at"]),
        files_changed=row["files_changed"],
        insertions=row["insertions"],
        deletions=row["deletions"],
        pr_number=row["pr_number"],
        session_id=row["session_id"],
        turn_number=row["turn_number"],
        remote_url=row["remote_url"],
        data_source=CommitDataSource(row["data_source"]),
        discovered_at=from_db(row["discovered_at"]),
    )


def _row_to_pull_request(row: sqlite3.Row) -> PullRequestRecord:
    return PullRequestRecord(
        repository=row["repository"],
        number=row["number"],
        title=row["title"] or "",
        head_branch=row["head_branch"] or "",
        base_branch=row["base_branch"] or "",
        state=row["state"] or "",
        is_merged=bool(row["is_merged"]),
        author=row["author"],
        url=row["url"],
        head_sha=row["head_sha"],
        created_at=from_db(row["created_at"]),
        merged_at=from_db(row["merged_at"]),
        additions=row["additions"],
        deletions=row["deletions"],
        changed_files=row["changed_files"],
        session_id=row["session_id"],
        data_source=PRDataSource(row["data_source"]),
        ci_status=row["ci_status"],
        checks_passed=row["checks_passed"],
        checks_failed=row["checks_failed"],
        fetched_at=from_db(row["fetched_at"]),
    )


def _row_to_check(row: sqlite3.Row) -> CheckRun:
    return CheckRun(
        name=row["name"],
        status=row["status"],
        conclusion=row["conclusion"],
        started_at=from_db(row["started_at"]),
        completed_at=from_db(row["completed_at"]),
        details_url=row["details_url"],
        check_run_id=row["check_run_id"],
        source=row["source"],
    )
