"""Tests for the SQLite store gateway."""

import sqlite3

import pytest

from agentrace.core.database import EventDatabase, _is_database_locked_error
from agentrace.core.errors import StoreBusyError
from agentrace.core.models import (
    CheckRun,
    CheckSource,
    CommitDataSource,
    CommitRecord,
    PRDataSource,
    PullRequestRecord,
    QualityMetric,
    QualityProvenance,
    TokenUsageRecord,
)
from agentrace.core.settings import Settings
from conftest import T0, at

EXPECTED_TABLES = {
    "sessions",
    "turns",
    "tool_executions",
    "tool_stats",
    "intent_records",
    "commits",
    "pull_requests",
    "pr_checks",
    "commit_checks",
    "quality_metrics",
    "token_usage",
    "_agentrace_migrations",
}


def _commit(sha: str, **overrides) -> CommitRecord:
    values = {
        "sha": sha,
        "repository": "acme/widgets",
        "branch": "feature",
        "message": f"commit {sha}",
        "committed_at": T0,
        "data_source": CommitDataSource.LIVE_HOOK,
    }
    values.update(overrides)
    return CommitRecord(**values)


def _pr(number: int = 7, **overrides) -> PullRequestRecord:
    values = {
        "repository": "acme/widgets",
        "number": number,
        "title": "Add widgets",
        "head_branch": "feature",
        "base_branch": "main",
        "state": "OPEN",
        "created_at": at(600),
        "data_source": PRDataSource.CLAUDE,
    }
    values.update(overrides)
    return PullRequestRecord(**values)


class TestSchema:
    def test_init__creates_all_tables(self, db):
        with sqlite3.connect(db.db_path) as conn:
            tables = {row[0] for row in conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'")}
        assert EXPECTED_TABLES <= tables

    def test_init__uses_wal_journal(self, db):
        with sqlite3.connect(db.db_path) as conn:
            assert conn.execute("PRAGMA journal_mode").fetchone()[0].lower() == "wal"

    def test_init__is_idempotent(self, config):
        EventDatabase(config=config)
        EventDatabase(config=config)


class TestRunTransaction:
    def test_run_transaction__commits_and_returns_value(self, db):
        created = db.run_transaction(lambda conn: db.ensure_session(conn, "s1", T0, cwd="/work"))

        assert created is True
        session = db.read(lambda conn: db.get_session(conn, "s1"))
        assert session is not None
        assert session.user_id == "tester"
        assert session.cwd == "/work"

    def test_run_transaction__rolls_back_on_error(self, db):
        def work(conn):
            db.ensure_session(conn, "s1", T0)
            raise ValueError("boom")

        with pytest.raises(ValueError):
            db.run_transaction(work)

        assert db.read(lambda conn: db.get_session(conn, "s1")) is None

    def test_run_transaction__retries_locked_errors_with_linear_backoff(self, tmp_path):
        config = Settings(data_dir=tmp_path, store_retry_base_delay=1.0, store_retry_step=0.5, store_max_retries=3)
        db = EventDatabase(config=config)
        sleeps = []
        db._sleep = sleeps.append
        attempts = []

        def work(conn):
            attempts.append(1)
            raise sqlite3.OperationalError("database is locked")

        with pytest.raises(StoreBusyError) as exc_info:
            db.run_transaction(work)

        assert len(attempts) == 4
        assert sleeps == [1.0, 1.5, 2.0]
        assert exc_info.value.attempts == 4

    def test_run_transaction__succeeds_after_transient_lock(self, db):
        attempts = []

        def work(conn):
            attempts.append(1)
            if len(attempts) < 3:
                raise sqlite3.OperationalError("database is locked")
            return "done"

        assert db.run_transaction(work) == "done"
        assert len(attempts) == 3

    def test_run_transaction__does_not_retry_other_operational_errors(self, db):
        attempts = []

        def work(conn):
            attempts.append(1)
            conn.execute("SELECT * FROM no_such_table")

        with pytest.raises(sqlite3.OperationalError):
            db.run_transaction(work)
        assert len(attempts) == 1

    def test_run_transaction__raises_store_busy_when_another_writer_holds_lock(self, tmp_path):
        config = Settings(
            data_dir=tmp_path,
            store_retry_base_delay=0.0,
            store_retry_step=0.0,
            store_max_retries=1,
            store_busy_timeout_ms=50,
        )
        db = EventDatabase(config=config)
        holder = sqlite3.connect(db.db_path, isolation_level=None)
        holder.execute("BEGIN EXCLUSIVE")
        try:
            with pytest.raises(StoreBusyError):
                db.run_transaction(lambda conn: db.ensure_session(conn, "s1", T0))
        finally:
            holder.execute("ROLLBACK")
            holder.close()

    def test_is_database_locked_error__matches_locked_and_busy(self):
        assert _is_database_locked_error(sqlite3.OperationalError("database is locked"))
        assert _is_database_locked_error(sqlite3.OperationalError("database is busy"))
        assert not _is_database_locked_error(sqlite3.OperationalError("no such table: x"))


class TestCommits:
    def test_insert_commit__second_insert_is_noop(self, db):
        first = db.run_transaction(lambda conn: db.insert_commit(conn, _commit("abc", session_id="s1")))
        second = db.run_transaction(lambda conn: db.insert_commit(conn, _commit("abc", session_id=None)))

        assert first is True
        assert second is False
        stored = db.read(lambda conn: db.get_commit(conn, "abc"))
        assert stored.session_id == "s1"

    def test_link_commits_to_pr__sets_only_pr_number(self, db):
        db.run_transaction(lambda conn: db.insert_commit(conn, _commit("a1", session_id="s1", turn_number=2)))
        db.run_transaction(lambda conn: db.insert_commit(conn, _commit("b2", branch="other")))

        linked = db.run_transaction(lambda conn: db.link_commits_to_pr(conn, "acme/widgets", 7, "feature", ["b2"]))

        assert linked == 2
        a1 = db.read(lambda conn: db.get_commit(conn, "a1"))
        b2 = db.read(lambda conn: db.get_commit(conn, "b2"))
        assert (a1.pr_number, a1.session_id, a1.turn_number) == (7, "s1", 2)
        assert (b2.pr_number, b2.session_id) == (7, None)


class TestPullRequests:
    def test_upsert_pull_request__unique_by_repository_and_number(self, db):
        db.run_transaction(lambda conn: db.upsert_pull_request(conn, _pr(7)))
        db.run_transaction(lambda conn: db.upsert_pull_request(conn, _pr(7, title="Renamed")))
        db.run_transaction(lambda conn: db.upsert_pull_request(conn, _pr(7, repository="acme/other")))

        prs = db.list_pull_requests()
        assert len(prs) == 2
        pr = db.read(lambda conn: db.get_pull_request(conn, "acme/widgets", 7))
        assert pr.title == "Renamed"

    def test_upsert_pull_request__never_clears_session_or_claude_source(self, db):
        db.run_transaction(lambda conn: db.upsert_pull_request(conn, _pr(7, session_id="s1")))
        db.run_transaction(
            lambda conn: db.upsert_pull_request(conn, _pr(7, session_id=None, data_source=PRDataSource.HUMAN))
        )

        pr = db.read(lambda conn: db.get_pull_request(conn, "acme/widgets", 7))
        assert pr.session_id == "s1"
        assert pr.data_source == PRDataSource.CLAUDE

    def test_classify_scanned_pr__human_without_assistant_commits(self, db):
        db.run_transaction(lambda conn: db.upsert_pull_request(conn, _pr(8, data_source=PRDataSource.HUMAN)))
        db.run_transaction(lambda conn: db.insert_commit(conn, _commit("h1", pr_number=8)))

        result = db.run_transaction(lambda conn: db.classify_scanned_pr(conn, "acme/widgets", 8))

        assert result == PRDataSource.HUMAN

    def test_classify_scanned_pr__background_with_assistant_commit(self, db):
        db.run_transaction(lambda conn: db.upsert_pull_request(conn, _pr(9, data_source=PRDataSource.HUMAN)))
        db.run_transaction(lambda conn: db.insert_commit(conn, _commit("a1", pr_number=9, session_id="s1")))

        result = db.run_transaction(lambda conn: db.classify_scanned_pr(conn, "acme/widgets", 9))

        pr = db.read(lambda conn: db.get_pull_request(conn, "acme/widgets", 9))
        assert result == PRDataSource.BACKGROUND
        assert pr.session_id == "s1"

    def test_replace_pr_checks__replaces_previous_set(self, db):
        checks = [CheckRun(name="build", status="completed", conclusion="success", source=CheckSource.PR_CHECKS)]
        db.run_transaction(lambda conn: db.replace_pr_checks(conn, "acme/widgets", 7, checks))
        db.run_transaction(
            lambda conn: db.replace_pr_checks(
                conn,
                "acme/widgets",
                7,
                [CheckRun(name="lint", status="completed", conclusion="failure", source=CheckSource.PR_CHECKS)],
            )
        )

        stored = db.read(lambda conn: db.get_pr_checks(conn, "acme/widgets", 7))
        assert [c.name for c in stored] == ["lint"]
        assert stored[0].source == CheckSource.PR_CHECKS

    def test_replace_commit_checks__keeps_run_and_suite_results(self, db):
        sha = "c" * 40
        checks = [
            CheckRun(name="tests", status="completed", conclusion="success", check_run_id=11),
            CheckRun(name="GitHub Actions", status="completed", conclusion="failure", source=CheckSource.CHECK_SUITE),
        ]

        db.run_transaction(lambda conn: db.replace_commit_checks(conn, sha, checks))

        stored = db.read(lambda conn: db.get_commit_checks(conn, sha))
        assert [(c.name, c.source) for c in stored] == [
            ("GitHub Actions", CheckSource.CHECK_SUITE),
            ("tests", CheckSource.CHECK_RUN),
        ]
        assert stored[1].check_run_id == 11


class TestQualityAndUsage:
    def test_upsert_quality_metric__one_row_per_source(self, db):
        metric = QualityMetric(
            repository="acme/widgets",
            pr_number=7,
            source=QualityProvenance.COMMENT,
            bugs_total=3,
            captured_at=T0,
        )
        db.run_transaction(lambda conn: db.upsert_quality_metric(conn, metric))
        db.run_transaction(
            lambda conn: db.upsert_quality_metric(conn, metric.model_copy(update={"bugs_total": 1}))
        )

        metrics = db.read(lambda conn: db.get_quality_metrics(conn, "acme/widgets", 7))
        assert len(metrics) == 1
        assert metrics[0].bugs_total == 1

    def test_insert_token_usage__ignores_duplicate_message_id(self, db):
        record = TokenUsageRecord(message_id="msg_1", session_id="s1", timestamp=T0, total_cost_usd=0.5)

        assert db.run_transaction(lambda conn: db.insert_token_usage(conn, record)) is True
        assert db.run_transaction(lambda conn: db.insert_token_usage(conn, record)) is False

        cost, _, messages = db.read(lambda conn: db.sum_token_usage(conn, "s1"))
        assert cost == pytest.approx(0.5)
        assert messages == 1
