"""Git repository access for commit mining."""

import logging
import re
from pathlib import Path

from agentrace.core.errors import ExternalToolError
from agentrace.core.models import CommitInfo, CommitStats
from agentrace.core.process import CommandRunner, SubprocessRunner
from agentrace.core.settings import Settings, settings
from agentrace.core.timestamps import parse_timestamp

logger = logging.getLogger(__name__)

FIELD_SEP = "\x1f"
RECORD_SEP = "\x1e"

_REMOTE_SLUG_RE = re.compile(r"(?:[:/])([^/:]+/[^/]+?)(?:\.git)?/?$")
_STAT_FILES_RE = re.compile(r"(\d+) files? changed")
_STAT_INSERTIONS_RE = re.compile(r"(\d+) insertions?\(\+\)")
_STAT_DELETIONS_RE = re.compile(r"(\d+) deletions?\(-\)")


def parse_remote_slug(url: str | None) -> str | None:
    """``owner/name`` from an ssh or https remote URL."""
    if not url:
        return None
    match = _REMOTE_SLUG_RE.search(url.strip())
    return match.group(1) if match else None


def parse_stat_summary(output: str) -> CommitStats:
    """Parse the summary line of ``git show --stat``."""
    for line in reversed(output.strip().splitlines()):
        if "changed" not in line:
            continue
        files = _STAT_FILES_RE.search(line)
        insertions = _STAT_INSERTIONS_RE.search(line)
        deletions = _STAT_DELETIONS_RE.search(line)
        return CommitStats(
            files_changed=int(files.group(1)) if files else 0,
            insertions=int(insertions.group(1)) if insertions else 0,
            deletions=int(deletions.group(1)) if deletions else 0,
        )
    return CommitStats()


class VcsClient:
    """Reads repository state through the ``git`` CLI.

    Every query degrades to an empty result when git fails, times out or is
    not installed.
    """

    def __init__(self, runner: CommandRunner | None = None, config: Settings | None = None):
        self.runner = runner or SubprocessRunner()
        self.config = config or settings

    def _git(self, cwd: Path | str, *args: str) -> str | None:
        try:
            result = self.runner.run(["git", *args], cwd=cwd, timeout=self.config.git_timeout)
        except ExternalToolError as e:
            logger.debug(f"git query failed in {cwd}: {e}")
            return None
        return result.stdout

    def is_repo(self, cwd: Path | str) -> bool:
        output = self._git(cwd, "rev-parse", "--is-inside-work-tree")
        return output is not None and output.strip() == "true"

    def toplevel(self, cwd: Path | str) -> str | None:
        output = self._git(cwd, "rev-parse", "--show-toplevel")
        return (output.strip() or None) if output else None

    def head_sha(self, cwd: Path | str) -> str | None:
        output = self._git(cwd, "rev-parse", "HEAD")
        return (output.strip() or None) if output else None

    def current_branch(self, cwd: Path | str) -> str | None:
        output = self._git(cwd, "branch", "--show-current")
        return (output.strip() or None) if output else None

    def remote_url(self, cwd: Path | str, remote: str = "origin") -> str | None:
        output = self._git(cwd, "remote", "get-url", remote)
        return (output.strip() or None) if output else None

    def repo_identifier(self, cwd: Path | str) -> str | None:
        """``owner/name`` of the origin remote, else the worktree root path."""
        slug = parse_remote_slug(self.remote_url(cwd))
        if slug:
            return slug
        return self.toplevel(cwd)

    def commit_exists(self, cwd: Path | str, sha: str) -> bool:
        return self._git(cwd, "cat-file", "-e", f"{sha}^{{commit}}") is not None

    def rev_list(self, cwd: Path | str, start: str, end: str, first_parent: bool = False) -> list[str]:
        """SHAs in ``start..end``, oldest first.

        With ``first_parent`` a merge contributes only the merge commit, not the
        history it brought in.
        """
        args = ["rev-list", "--reverse"]
        if first_parent:
            args.append("--first-parent")
        args.append(f"{start}..{end}")
        output = self._git(cwd, *args)
        if not output:
            return []
        return [line.strip() for line in output.splitlines() if line.strip()]

    def recent_commits(self, cwd: Path | str, since_days: int, limit: int) -> list[str]:
        """SHAs reachable from any local branch within the window, oldest first."""
        output = self._git(
            cwd, "log", "--branches", f"--since={since_days}.days", f"--max-count={limit}", "--format=%H"
        )
        if not output:
            return []
        shas = [line.strip() for line in output.splitlines() if line.strip()]
        shas.reverse()
        return shas

    def commit_info(self, cwd: Path | str, sha: str) -> CommitInfo | None:
        fmt = FIELD_SEP.join(["%H", "%an", "%ae", "%cI", "%s", "%b"]) + RECORD_SEP
        output = self._git(cwd, "show", "-s", f"--format={fmt}", sha)
        if not output:
            return None
        fields = output.split(RECORD_SEP)[0].split(FIELD_SEP)
        if len(fields) < 6:
            logger.debug(f"Unexpected git show output for {sha}: {output[:200]!r}")
            return None
        return CommitInfo(
            sha=fields[0].strip(),
            author_name=fields[1],
            author_email=fields[2],
            committed_at=parse_timestamp(fields[3]),
            subject=fields[4],
            body=fields[5].strip(),
        )

    def commit_stats(self, cwd: Path | str, sha: str) -> CommitStats:
        output = self._git(cwd, "show", "--stat", "--format=", sha)
        if not output:
            return CommitStats()
        return parse_stat_summary(output)

    def branch_for_commit(self, cwd: Path | str, sha: str) -> str | None:
        """Branch containing ``sha``, preferring the checked-out branch."""
        output = self._git(cwd, "branch", "--contains", sha, "--format=%(refname:short)")
        if not output:
            return None
        branches = [line.strip() for line in output.splitlines() if line.strip()]
        if not branches:
            return None
        current = self.current_branch(cwd)
        if current in branches:
            return current
        return branches[0]
