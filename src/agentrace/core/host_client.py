"""GitHub access through the ``gh`` CLI.

``gh api`` expands ``{owner}/{repo}`` from the repository in ``cwd``, so
callers only ever pass a working directory.
"""

import json
import logging
from pathlib import Path
from typing import Any

from agentrace.core.errors import ExternalToolError
from agentrace.core.models import CheckRun, CheckSource, PullRequestInfo
from agentrace.core.process import CommandRunner, SubprocessRunner
from agentrace.core.settings import Settings, settings
from agentrace.core.timestamps import parse_timestamp

logger = logging.getLogger(__name__)

PR_FIELDS = [
    "number",
    "title",
    "headRefName",
    "baseRefName",
    "state",
    "author",
    "url",
    "headRefOid",
    "createdAt",
    "mergedAt",
    "additions",
    "deletions",
    "changedFiles",
]


def _pr_from_json(data: dict[str, Any]) -> PullRequestInfo | None:
    number = data.get("number")
    if not isinstance(number, int):
        return None
    author = data.get("author")
    commits = data.get("commits") or []
    state = str(data.get("state") or "")
    merged_at = parse_timestamp(data.get("mergedAt"))
    return PullRequestInfo(
        number=number,
        title=data.get("title") or "",
        head_branch=data.get("headRefName") or "",
        base_branch=data.get("baseRefName") or "",
        state=state,
        author=author.get("login") if isinstance(author, dict) else None,
        url=data.get("url"),
        head_sha=data.get("headRefOid"),
        created_at=parse_timestamp(data.get("createdAt")),
        merged_at=merged_at,
        is_merged=state.upper() == "MERGED" or merged_at is not None,
        additions=data.get("additions") or 0,
        deletions=data.get("deletions") or 0,
        changed_files=data.get("changedFiles") or 0,
        commit_shas=[c["oid"] for c in commits if isinstance(c, dict) and c.get("oid")],
    )


def _check_run_from_api(data: dict[str, Any]) -> CheckRun:
    output = data.get("output") or {}
    return CheckRun(
        name=data.get("name") or "unknown",
        status=data.get("status"),
        conclusion=data.get("conclusion"),
        started_at=parse_timestamp(data.get("started_at")),
        completed_at=parse_timestamp(data.get("completed_at")),
        details_url=data.get("details_url") or data.get("html_url"),
        check_run_id=data.get("id"),
        source=CheckSource.CHECK_RUN,
        output_title=output.get("title"),
        output_summary=output.get("summary"),
        output_text=output.get("text"),
    )


def _check_from_rollup(data: dict[str, Any]) -> CheckRun:
    """Entry of ``statusCheckRollup``: either a CheckRun or a StatusContext."""
    if data.get("__typename") == "StatusContext":
        state = (data.get("state") or "").lower()
        return CheckRun(
            name=data.get("context") or "unknown",
            status="completed" if state not in ("pending", "expected") else "in_progress",
            conclusion={"success": "success", "failure": "failure", "error": "failure"}.get(state),
            started_at=parse_timestamp(data.get("startedAt")),
            details_url=data.get("targetUrl"),
            source=CheckSource.PR_CHECKS,
        )
    return CheckRun(
        name=data.get("name") or "unknown",
        status=(data.get("status") or "").lower() or None,
        conclusion=(data.get("conclusion") or "").lower() or None,
        started_at=parse_timestamp(data.get("startedAt")),
        completed_at=parse_timestamp(data.get("completedAt")),
        details_url=data.get("detailsUrl"),
        source=CheckSource.PR_CHECKS,
    )


class HostClient:
    """Reads pull requests, checks and comments from GitHub.

    Failed commands and malformed JSON yield empty results.
    """

    def __init__(self, runner: CommandRunner | None = None, config: Settings | None = None):
        self.runner = runner or SubprocessRunner()
        self.config = config or settings

    def _gh_json(self, cwd: Path | str, *args: str) -> Any:
        try:
            result = self.runner.run(["gh", *args], cwd=cwd, timeout=self.config.host_timeout)
        except ExternalToolError as e:
            logger.info(f"gh query failed in {cwd}: {e}")
            return None
        try:
            return json.loads(result.stdout) if result.stdout.strip() else None
        except json.JSONDecodeError as e:
            logger.warning(f"Malformed JSON from gh {' '.join(args[:2])}: {e}")
            return None

    def list_prs_for_branch(self, cwd: Path | str, branch: str) -> list[PullRequestInfo]:
        data = self._gh_json(
            cwd, "pr", "list", "--head", branch, "--state", "all", "--limit", "10", "--json", ",".join(PR_FIELDS)
        )
        if not isinstance(data, list):
            return []
        return [pr for pr in (_pr_from_json(item) for item in data if isinstance(item, dict)) if pr]

    def list_recent_prs(self, cwd: Path | str, limit: int) -> list[PullRequestInfo]:
        data = self._gh_json(
            cwd, "pr", "list", "--state", "all", "--limit", str(limit), "--json", ",".join(PR_FIELDS)
        )
        if not isinstance(data, list):
            return []
        return [pr for pr in (_pr_from_json(item) for item in data if isinstance(item, dict)) if pr]

    def view_pr(self, cwd: Path | str, number: int) -> PullRequestInfo | None:
        data = self._gh_json(cwd, "pr", "view", str(number), "--json", ",".join([*PR_FIELDS, "commits"]))
        if not isinstance(data, dict):
            return None
        return _pr_from_json(data)

    def pr_checks(self, cwd: Path | str, number: int) -> list[CheckRun]:
        """PR-level checks from the status rollup of the head commit."""
        data = self._gh_json(cwd, "pr", "view", str(number), "--json", "statusCheckRollup")
        if not isinstance(data, dict):
            return []
        rollup = data.get("statusCheckRollup") or []
        return [_check_from_rollup(item) for item in rollup if isinstance(item, dict)]

    def check_runs_for_commit(self, cwd: Path | str, sha: str) -> list[CheckRun]:
        data = self._gh_json(cwd, "api", f"repos/{{owner}}/{{repo}}/commits/{sha}/check-runs")
        if not isinstance(data, dict):
            return []
        return [_check_run_from_api(item) for item in data.get("check_runs") or [] if isinstance(item, dict)]

    def check_suites_for_commit(self, cwd: Path | str, sha: str) -> list[CheckRun]:
        data = self._gh_json(cwd, "api", f"repos/{{owner}}/{{repo}}/commits/{sha}/check-suites")
        if not isinstance(data, dict):
            return []
        suites = []
        for item in data.get("check_suites") or []:
            if not isinstance(item, dict):
                continue
            app = item.get("app") or {}
            suites.append(
                CheckRun(
                    name=app.get("name") or f"suite-{item.get('id')}",
                    status=item.get("status"),
                    conclusion=item.get("conclusion"),
                    started_at=parse_timestamp(item.get("created_at")),
                    completed_at=parse_timestamp(item.get("updated_at")),
                    check_run_id=item.get("id"),
                    source=CheckSource.CHECK_SUITE,
                )
            )
        return suites

    def check_run_annotations(self, cwd: Path | str, check_run_id: int) -> list[str]:
        data = self._gh_json(cwd, "api", f"repos/{{owner}}/{{repo}}/check-runs/{check_run_id}/annotations")
        if not isinstance(data, list):
            return []
        annotations = []
        for item in data:
            if not isinstance(item, dict):
                continue
            parts = [item.get("title"), item.get("message"), item.get("raw_details")]
            annotations.append("\n".join(str(p) for p in parts if p))
        return annotations

    def issue_comments(self, cwd: Path | str, number: int) -> list[str]:
        """Comment bodies on the PR conversation, newest first."""
        data = self._gh_json(cwd, "api", f"repos/{{owner}}/{{repo}}/issues/{number}/comments")
        if not isinstance(data, list):
            return []
        comments = [item for item in data if isinstance(item, dict) and item.get("body")]
        comments.sort(key=lambda c: c.get("created_at") or "", reverse=True)
        return [c["body"] for c in comments]
