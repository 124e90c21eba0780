"""Commit mining, PR ingestion and attribution.

A commit row with a ``session_id`` was authored by the assistant; a null
``session_id`` means a human. Attribution is decided once, when the commit is
first stored, and later ingestion only ever fills in the PR number.
"""

import logging
import re
from datetime import datetime
from pathlib import Path

from pydantic import BaseModel

from agentrace.core.database import EventDatabase
from agentrace.core.git_tracker import VcsClient
from agentrace.core.host_client import HostClient
from agentrace.core.models import (
    CheckRun,
    CISummary,
    CommitDataSource,
    CommitRecord,
    PRDataSource,
    PullRequestRecord,
    ScanTrigger,
)
from agentrace.core.quality_extractor import QualityCollector
from agentrace.core.settings import Settings, settings
from agentrace.core.timestamps import utcnow

logger = logging.getLogger(__name__)

_GIT_PREFIX = r"\bgit\s+(?:-C\s+\S+\s+|-c\s+\S+\s+)*"
COMMIT_PRODUCING_RE = re.compile(_GIT_PREFIX + r"(commit|merge|cherry-pick|rebase|am|revert)\b")
GIT_PUSH_RE = re.compile(_GIT_PREFIX + r"push\b")
GH_PR_CREATE_RE = re.compile(r"\bgh\s+pr\s+create\b")
PR_REFERENCE_RE = re.compile(r"#(\d+)\)?\s*$")

SUCCESS_CONCLUSIONS = {"success", "neutral", "skipped"}
FAILURE_CONCLUSIONS = {"failure", "timed_out", "cancelled", "action_required", "startup_failure", "error"}


class CommandEffect(BaseModel):
    """What a Bash command means for mining."""

    mines_commits: bool = False
    scan_trigger: ScanTrigger | None = None


def classify_bash_command(command: str | None) -> CommandEffect:
    if not command:
        return CommandEffect()
    if GH_PR_CREATE_RE.search(command):
        return CommandEffect(mines_commits=True, scan_trigger=ScanTrigger.PR_CREATE)
    if GIT_PUSH_RE.search(command):
        return CommandEffect(mines_commits=True, scan_trigger=ScanTrigger.PUSH)
    if COMMIT_PRODUCING_RE.search(command):
        return CommandEffect(mines_commits=True)
    return CommandEffect()


def candidate_pr_number(subject: str) -> int | None:
    """Trailing ``#123`` or ``(#123)`` in a commit subject, as left by squash merges."""
    match = PR_REFERENCE_RE.search(subject or "")
    return int(match.group(1)) if match else None


def summarize_checks(checks: list[CheckRun]) -> CISummary:
    """Any failure wins, then any pending, then success. No checks means no status."""
    summary = CISummary()
    for check in checks:
        conclusion = (check.conclusion or "").lower()
        status = (check.status or "").lower()
        if conclusion in FAILURE_CONCLUSIONS:
            summary.failed += 1
        elif conclusion in SUCCESS_CONCLUSIONS:
            summary.passed += 1
        elif status != "completed" or not conclusion:
            summary.pending += 1
        else:
            summary.passed += 1

    if summary.failed:
        summary.status = "failure"
    elif summary.pending:
        summary.status = "pending"
    elif summary.passed:
        summary.status = "success"
    return summary


class GitMiner:
    """Turns git history and GitHub PR data into attributed store rows."""

    def __init__(
        self,
        db: EventDatabase,
        vcs: VcsClient | None = None,
        host: HostClient | None = None,
        quality: QualityCollector | None = None,
        config: Settings | None = None,
    ):
        self.db = db
        self.config = config or settings
        self.vcs = vcs or VcsClient(config=self.config)
        self.host = host or HostClient(config=self.config)
        self.quality = quality or QualityCollector(db, self.host)

    def _build_commit(
        self,
        cwd: Path | str,
        sha: str,
        repository: str,
        branch: str | None,
        remote_url: str | None,
        session_id: str | None,
        turn_number: int | None,
        data_source: CommitDataSource,
    ) -> CommitRecord | None:
        info = self.vcs.commit_info(cwd, sha)
        if info is None:
            logger.warning(f"Cannot read commit {sha} in {cwd}")
            return None
        stats = self.vcs.commit_stats(cwd, sha)
        return CommitRecord(
            sha=info.sha or sha,
            repository=repository,
            branch=branch,
            message=info.message,
            author_name=info.author_name,
            author_email=info.author_email,
            committed_at=info.committed_at,
            files_changed=stats.files_changed,
            insertions=stats.insertions,
            deletions=stats.deletions,
            pr_number=candidate_pr_number(info.subject),
            session_id=session_id,
            turn_number=turn_number if session_id else None,
            remote_url=remote_url,
            data_source=data_source,
            discovered_at=utcnow(),
        )

    def _untracked(self, shas: list[str]) -> list[str]:
        return self.db.read(lambda conn: [sha for sha in shas if not self.db.commit_exists(conn, sha)])

    def mine_range(
        self,
        cwd: Path | str,
        start: str | None,
        end: str | None = None,
        session_id: str | None = None,
        turn_number: int | None = None,
        data_source: CommitDataSource = CommitDataSource.LIVE_HOOK,
        not_before: datetime | None = None,
    ) -> list[CommitRecord]:
        """Store the commits in ``start..end`` that are not tracked yet.

        With no usable ``start`` only ``end`` itself is considered. ``end``
        defaults to HEAD. The range follows first parents only, so a merge
        adds the merge commit and not the merged branch. Commits whose committer
        date is before ``not_before`` are stored without the session: a
        fast-forward pull brought them in, nobody wrote them during the turn.
        """
        end = end or self.vcs.head_sha(cwd)
        if not end:
            return []
        repository = self.vcs.repo_identifier(cwd)
        if not repository:
            return []

        if start and start == end:
            shas = []
        elif start and self.vcs.commit_exists(cwd, start):
            shas = self.vcs.rev_list(cwd, start, end, first_parent=True)
        else:
            shas = [end]

        shas = self._untracked(shas)
        if not shas:
            return []

        branch = self.vcs.current_branch(cwd)
        remote_url = self.vcs.remote_url(cwd)
        # git dates have second resolution
        cutoff = not_before.replace(microsecond=0) if not_before else None
        records = []
        for sha in shas:
            record = self._build_commit(
                cwd, sha, repository, branch, remote_url, session_id, turn_number, data_source
            )
            if record is None:
                continue
            if cutoff and record.session_id and record.committed_at and record.committed_at < cutoff:
                logger.debug(f"Commit {sha[:12]} predates the turn, not attributing it to {session_id}")
                record.session_id = None
                record.turn_number = None
            records.append(record)
        return self._store_commits(records)

    def _store_commits(self, records: list[CommitRecord]) -> list[CommitRecord]:
        if not records:
            return []
        inserted = self.db.run_transaction(
            lambda conn: [record for record in records if self.db.insert_commit(conn, record)]
        )
        for record in inserted:
            owner = f"session {record.session_id}" if record.session_id else "human"
            logger.info(f"Tracked commit {record.sha[:12]} in {record.repository} ({owner})")
        return inserted

    def mine_turn_commits(self, session_id: str, cwd: Path | str) -> list[CommitRecord]:
        """Commits made since the current turn started, attributed to the session."""

        def find_turn(conn):
            return self.db.get_open_turn(conn, session_id) or self.db.get_latest_turn(conn, session_id)

        turn = self.db.read(find_turn)
        return self.mine_range(
            cwd,
            turn.start_head_sha if turn else None,
            session_id=session_id,
            turn_number=turn.turn_number if turn else None,
            data_source=CommitDataSource.LIVE_HOOK,
            not_before=turn.started_at if turn else None,
        )

    def mine_recent(self, cwd: Path | str) -> list[CommitRecord]:
        """Store recent commits the live hooks never saw, matching them to sessions where possible."""
        repository = self.vcs.repo_identifier(cwd)
        repo_root = self.vcs.toplevel(cwd)
        if not repository or not repo_root:
            return []

        shas = self._untracked(
            self.vcs.recent_commits(cwd, self.config.scan_since_days, self.config.scan_commit_limit)
        )
        if not shas:
            return []

        remote_url = self.vcs.remote_url(cwd)
        records = []
        for sha in shas:
            record = self._build_commit(
                cwd,
                sha,
                repository,
                self.vcs.branch_for_commit(cwd, sha),
                remote_url,
                None,
                None,
                CommitDataSource.BACKGROUND_SCAN,
            )
            if record is None:
                continue
            match = self.db.read(lambda conn: self.db.find_session_for_commit(conn, repo_root, record.committed_at))
            if match:
                record.session_id, record.turn_number = match
            records.append(record)

        return self._store_commits(records)

    def sync_branch_pr(
        self,
        cwd: Path | str,
        branch: str | None = None,
        session_id: str | None = None,
        data_source: PRDataSource = PRDataSource.CLAUDE,
    ) -> PullRequestRecord | None:
        """Ingest the PR opened from ``branch`` (default: the checked-out branch)."""
        branch = branch or self.vcs.current_branch(cwd)
        if not branch:
            return None
        prs = self.host.list_prs_for_branch(cwd, branch)
        if not prs:
            logger.debug(f"No PR for branch {branch} in {cwd}")
            return None
        return self.ingest_pr(cwd, prs[0].number, session_id=session_id, data_source=data_source)

    def ingest_pr(
        self,
        cwd: Path | str,
        pr_number: int,
        session_id: str | None = None,
        data_source: PRDataSource = PRDataSource.CLAUDE,
    ) -> PullRequestRecord | None:
        repository = self.vcs.repo_identifier(cwd)
        if not repository:
            return None
        info = self.host.view_pr(cwd, pr_number)
        if info is None:
            return None

        head_runs: list[CheckRun] = []
        head_suites: list[CheckRun] = []
        if info.head_sha:
            head_runs = self.host.check_runs_for_commit(cwd, info.head_sha)
            head_suites = self.host.check_suites_for_commit(cwd, info.head_sha)
        pr_checks = self.host.pr_checks(cwd, pr_number)
        summary = summarize_checks(pr_checks or head_runs or head_suites)

        tracked = self._tracked_pr_commits(info.commit_shas)
        commit_checks: dict[str, list[CheckRun]] = {}
        for sha in tracked:
            if sha == info.head_sha:
                commit_checks[sha] = head_runs + head_suites
            else:
                commit_checks[sha] = self.host.check_runs_for_commit(cwd, sha) + self.host.check_suites_for_commit(
                    cwd, sha
                )

        record = PullRequestRecord.from_info(repository, info, session_id, data_source)
        record.ci_status = summary.status
        record.checks_passed = summary.passed
        record.checks_failed = summary.failed
        record.fetched_at = utcnow()

        def work(conn) -> PullRequestRecord | None:
            self.db.upsert_pull_request(conn, record)
            self.db.replace_pr_checks(conn, repository, pr_number, pr_checks)
            self.db.link_commits_to_pr(conn, repository, pr_number, info.head_branch, info.commit_shas)
            for sha, checks in commit_checks.items():
                self.db.replace_commit_checks(conn, sha, checks)
            if data_source != PRDataSource.CLAUDE:
                self.db.classify_scanned_pr(conn, repository, pr_number)
            return self.db.get_pull_request(conn, repository, pr_number)

        stored = self.db.run_transaction(work)
        if stored is None:
            return None
        logger.info(
            f"Ingested PR {repository}#{pr_number} ({stored.data_source.value}, ci={stored.ci_status or 'none'})"
        )

        try:
            self.quality.collect(
                cwd, repository, pr_number, info.head_sha, session_id=stored.session_id, check_runs=head_runs
            )
        except Exception as e:
            logger.warning(f"Quality extraction failed for {repository}#{pr_number}: {e}")

        return stored

    def _tracked_pr_commits(self, shas: list[str]) -> list[str]:
        return self.db.read(lambda conn: [sha for sha in shas if self.db.commit_exists(conn, sha)])
