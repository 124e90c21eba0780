"""Tests for the reporting service."""

import pytest

from agentrace.core.models import CommitRecord, PRDataSource, PullRequestRecord, QualityMetric, QualityProvenance
from agentrace.core.tracker import SessionTracker
from agentrace.solo.services.session_service import SessionService
from conftest import at


@pytest.fixture
def service(db):
    return SessionService(db)


def _store_pr(db, number: int, session_id: str | None, data_source: PRDataSource) -> None:
    pr = PullRequestRecord(
        repository="acme/widgets",
        number=number,
        title=f"PR {number}",
        state="OPEN",
        created_at=at(100 * number),
        session_id=session_id,
        data_source=data_source,
    )
    db.run_transaction(lambda conn: db.upsert_pull_request(conn, pr))


def _store_commit(db, sha: str, pr_number: int, session_id: str | None) -> None:
    commit = CommitRecord(sha=sha, repository="acme/widgets", pr_number=pr_number, session_id=session_id)
    db.run_transaction(lambda conn: db.insert_commit(conn, commit))


def test_get_pr_reports__splits_commit_attribution(service, db):
    _store_pr(db, 1, "s1", PRDataSource.CLAUDE)
    _store_commit(db, "a" * 40, 1, "s1")
    _store_commit(db, "b" * 40, 1, "s1")
    _store_commit(db, "c" * 40, 1, None)

    (report,) = service.get_pr_reports()

    assert (report.assistant_commits, report.human_commits) == (2, 1)


def test_get_pr_reports__attaches_latest_quality(service, db):
    _store_pr(db, 2, None, PRDataSource.HUMAN)
    metric = QualityMetric(
        repository="acme/widgets",
        pr_number=2,
        source=QualityProvenance.COMMENT,
        quality_gate_status="PASSED",
        coverage_percent=81.5,
        captured_at=at(0),
    )
    db.run_transaction(lambda conn: db.upsert_quality_metric(conn, metric))

    (report,) = service.get_pr_reports()

    assert report.quality.quality_gate_status == "PASSED"
    assert report.cost is None


def test_get_pr_reports__filters_by_repository(service, db):
    _store_pr(db, 3, None, PRDataSource.HUMAN)

    assert service.get_pr_reports(repository="acme/other") == []
    assert len(service.get_pr_reports(repository="acme/widgets")) == 1


def test_get_most_recent_session(service, db, config):
    assert service.get_most_recent_session() is None

    tracker = SessionTracker(db, config=config)
    tracker.start_turn("older", "one", now=at(0))
    tracker.start_turn("newer", "two", now=at(60))

    assert service.get_most_recent_session() == "newer"
