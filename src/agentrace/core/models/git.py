"""Commit, pull request, check and quality metric models."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field


class CommitDataSource(str, Enum):
    """How a commit reached the store."""

    LIVE_HOOK = "live_hook"
    BACKGROUND_SCAN = "background_scan"


class PRDataSource(str, Enum):
    """How a pull request reached the store.

    CLAUDE rows were synced from a live session trigger. Rows found by a
    reconciliation scan are BACKGROUND when linked to assistant commits and
    HUMAN otherwise.
    """

    CLAUDE = "claude"
    HUMAN = "human"
    BACKGROUND = "background"


class CheckSource(str, Enum):
    CHECK_RUN = "check_run"
    CHECK_SUITE = "check_suite"
    PR_CHECKS = "pr_checks"


class QualityProvenance(str, Enum):
    CHECK_RUN_OUTPUT = "check_run_output"
    ANNOTATION = "annotation"
    COMMENT = "comment"


class CommitStats(BaseModel):
    files_changed: int = 0
    insertions: int = 0
    deletions: int = 0


class CommitInfo(BaseModel):
    """Raw commit metadata as read from git."""

    sha: str
    author_name: str = ""
    author_email: str = ""
    committed_at: datetime | None = None
    subject: str = ""
    body: str = ""

    @property
    def message(self) -> str:
        return f"{self.subject}\n\n{self.body}".strip() if self.body else self.subject


class CommitRecord(BaseModel):
    """A tracked commit. ``session_id`` set means the assistant authored it."""

    sha: str
    repository: str
    branch: str | None = None
    message: str = ""
    author_name: str = ""
    author_email: str = ""
    committed_at: datetime | None = None
    files_changed: int = 0
    insertions: int = 0
    deletions: int = 0
    pr_number: int | None = None
    session_id: str | None = None
    turn_number: int | None = None
    remote_url: str | None = None
    data_source: CommitDataSource = CommitDataSource.LIVE_HOOK
    discovered_at: datetime | None = None

    @property
    def is_assistant(self) -> bool:
        return self.session_id is not None


class PullRequestInfo(BaseModel):
    """Pull request as returned by the code review host."""

    number: int
    title: str = ""
    head_branch: str = ""
    base_branch: str = ""
    state: str = ""
    author: str | None = None
    url: str | None = None
    head_sha: str | None = None
    created_at: datetime | None = None
    merged_at: datetime | None = None
    is_merged: bool = False
    additions: int = 0
    deletions: int = 0
    changed_files: int = 0
    commit_shas: list[str] = Field(default_factory=list)


class PullRequestRecord(BaseModel):
    """A tracked pull request, unique by (repository, number)."""

    repository: str
    number: int
    title: str = ""
    head_branch: str = ""
    base_branch: str = ""
    state: str = ""
    is_merged: bool = False
    author: str | None = None
    url: str | None = None
    head_sha: str | None = None
    created_at: datetime | None = None
    merged_at: datetime | None = None
    additions: int = 0
    deletions: int = 0
    changed_files: int = 0
    session_id: str | None = None
    data_source: PRDataSource = PRDataSource.CLAUDE
    ci_status: str | None = None
    checks_passed: int = 0
    checks_failed: int = 0
    fetched_at: datetime | None = None

    @classmethod
    def from_info(
        cls, repository: str, info: PullRequestInfo, session_id: str | None, data_source: PRDataSource
    ) -> "PullRequestRecord":
        return cls(
            repository=repository,
            number=info.number,
            title=info.title,
            head_branch=info.head_branch,
            base_branch=info.base_branch,
            state=info.state,
            is_merged=info.is_merged,
            author=info.author,
            url=info.url,
            head_sha=info.head_sha,
            created_at=info.created_at,
            merged_at=info.merged_at,
            additions=info.additions,
            deletions=info.deletions,
            changed_files=info.changed_files,
            session_id=session_id,
            data_source=data_source,
        )


class CheckRun(BaseModel):
    """One CI or analysis job result attached to a PR or a commit."""

    name: str
    status: str | None = None
    conclusion: str | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    details_url: str | None = None
    check_run_id: int | None = None
    source: CheckSource = CheckSource.CHECK_RUN
    output_title: str | None = None
    output_summary: str | None = None
    output_text: str | None = None

    @property
    def output_payload(self) -> str:
        return "\n".join(part for part in (self.output_title, self.output_summary, self.output_text) if part)


class CISummary(BaseModel):
    """Pass/fail rollup over a set of checks."""

    status: str | None = None
    passed: int = 0
    failed: int = 0
    pending: int = 0


class QualityMetric(BaseModel):
    """Quality gate signals harvested for a PR. Any metric may be missing."""

    repository: str
    pr_number: int
    commit_sha: str | None = None
    session_id: str | None = None
    source: QualityProvenance
    quality_gate_status: str | None = None
    bugs_total: int | None = None
    vulnerabilities_total: int | None = None
    security_hotspots_total: int | None = None
    code_smells_total: int | None = None
    duplicated_lines_density: float | None = None
    coverage_percent: float | None = None
    technical_debt_minutes: int | None = None
    reliability_rating: int | None = None
    security_rating: int | None = None
    maintainability_rating: int | None = None
    raw_snippet: str | None = None
    captured_at: datetime | None = None


class ScanTrigger(str, Enum):
    """Why a reconciliation scan was requested."""

    STOP = "stop"
    PUSH = "push"
    PR_CREATE = "pr_create"
    MANUAL = "manual"

    @property
    def forces_scan(self) -> bool:
        return self in (ScanTrigger.PUSH, ScanTrigger.PR_CREATE)


class ScanReport(BaseModel):
    """Outcome of one reconciliation scan."""

    repository: str | None = None
    trigger: ScanTrigger
    skipped: bool = False
    branch_pr: int | None = None
    commits_added: int = 0
    prs_ingested: int = 0
    errors: list[str] = Field(default_factory=list)
