"""Read-only reporting over tracked sessions and pull requests."""

from typing import Any

from pydantic import BaseModel

from agentrace.core.cost_accountant import CostAccountant
from agentrace.core.database import EventDatabase
from agentrace.core.migrations import MigrationRunner
from agentrace.core.models import (
    CommitRecord,
    PRCostSummary,
    PullRequestRecord,
    QualityMetric,
    SessionDetail,
    SessionSummary,
    ToolStats,
    TurnCost,
)


class PRReport(BaseModel):
    """One row of the ``prs`` listing."""

    pr: PullRequestRecord
    assistant_commits: int = 0
    human_commits: int = 0
    quality: QualityMetric | None = None
    cost: PRCostSummary | None = None


class SessionService:
    """Handles session and PR queries for the reporting commands."""

    def __init__(self, db: EventDatabase | None = None):
        self.db = db or EventDatabase()
        self.accountant = CostAccountant(self.db, config=self.db.config)

    def list_sessions(self, limit: int | None = None) -> list[str]:
        return self.db.list_sessions(limit=limit)

    def get_sessions_summary(self, limit: int | None = None) -> list[SessionSummary]:
        return self.db.get_sessions_summary(limit=limit)

    def get_most_recent_session(self) -> str | None:
        sessions = self.list_sessions(limit=1)
        return sessions[0] if sessions else None

    def get_session_detail(self, session_id: str) -> SessionDetail | None:
        return self.db.get_session_detail(session_id)

    def get_turn_costs(self, session_id: str) -> list[TurnCost]:
        return self.accountant.turn_costs(session_id)

    def get_pr_costs(self, session_id: str) -> list[PRCostSummary]:
        return self.accountant.pr_costs(session_id)

    def get_tool_stats(self) -> list[ToolStats]:
        return self.db.list_tool_stats()

    def list_commits(self, repository: str | None = None, limit: int = 50) -> list[CommitRecord]:
        return self.db.list_commits(repository=repository, limit=limit)

    def get_migration_status(self) -> dict[str, Any]:
        runner = MigrationRunner(self.db.db_path, busy_timeout_ms=self.db.config.store_busy_timeout_ms)
        return runner.get_migration_status()

    def get_pr_reports(self, repository: str | None = None, limit: int = 50) -> list[PRReport]:
        """PRs with commit attribution split, latest quality metrics and window cost."""
        reports = []
        costs_by_session: dict[str, list[PRCostSummary]] = {}
        for pr in self.db.list_pull_requests(repository=repository, limit=limit):
            commits = self.db.read(lambda conn: self.db.get_pr_commits(conn, pr.repository, pr.number))
            metrics = self.db.read(lambda conn: self.db.get_quality_metrics(conn, pr.repository, pr.number))

            cost = None
            if pr.session_id:
                if pr.session_id not in costs_by_session:
                    costs_by_session[pr.session_id] = self.accountant.pr_costs(pr.session_id)
                cost = next(
                    (
                        c
                        for c in costs_by_session[pr.session_id]
                        if c.repository == pr.repository and c.pr_number == pr.number
                    ),
                    None,
                )

            reports.append(
                PRReport(
                    pr=pr,
                    assistant_commits=sum(1 for c in commits if c.is_assistant),
                    human_commits=sum(1 for c in commits if not c.is_assistant),
                    quality=metrics[0] if metrics else None,
                    cost=cost,
                )
            )
        return reports
