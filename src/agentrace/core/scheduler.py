"""Cooldown-gated background reconciliation scans.

Live hooks miss commits and PRs made outside the assistant, or while hooks
were not installed. A reconciliation scan re-reads recent git history and
GitHub PRs for the repository. Hooks only ever dispatch a scan as a detached
``agentrace scan`` process so the hook itself returns immediately.
"""

import hashlib
import json
import logging
import os
import subprocess
import sys
from datetime import datetime, timedelta
from pathlib import Path

from agentrace.core.database import EventDatabase
from agentrace.core.git_miner import GitMiner
from agentrace.core.git_tracker import VcsClient
from agentrace.core.lock import AgentraceLock
from agentrace.core.models import PRDataSource, ScanReport, ScanTrigger
from agentrace.core.settings import Settings, settings
from agentrace.core.timestamps import parse_timestamp, to_db, utcnow

logger = logging.getLogger(__name__)


def scan_lock_name(repo_id: str) -> str:
    """Lock file name for scans of one repository."""
    return f"scan-{hashlib.sha1(repo_id.encode()).hexdigest()[:12]}"


class CooldownCache:
    """JSON map of repository identifier to the time its last scan was dispatched."""

    def __init__(self, path: Path | None = None, config: Settings | None = None):
        self.config = config or settings
        self.path = Path(path) if path else self.config.cooldown_cache_path
        self.lock = AgentraceLock("scan_cooldown", timeout=2.0, config=self.config)

    def load(self) -> dict[str, str]:
        try:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            return {}
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Ignoring unreadable cooldown cache {self.path}: {e}")
            return {}
        if not isinstance(data, dict):
            return {}
        return {str(k): str(v) for k, v in data.items()}

    def last_scan(self, repo_id: str) -> datetime | None:
        return parse_timestamp(self.load().get(repo_id))

    def record(self, repo_id: str, when: datetime | None) -> bool:
        """Persist ``when`` for ``repo_id``, or drop the entry when ``when`` is None.

        Returns False if the lock or write failed.
        """
        with self.lock.acquire() as acquired:
            if not acquired:
                logger.info(f"Cooldown cache busy, not recording scan for {repo_id}")
                return False
            data = self.load()
            if when is None:
                data.pop(repo_id, None)
            else:
                data[repo_id] = to_db(when) or ""
            tmp_path = self.path.with_suffix(".tmp")
            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                with open(tmp_path, "w", encoding="utf-8") as f:
                    json.dump(data, f, indent=2, sort_keys=True)
                os.replace(tmp_path, self.path)
            except OSError as e:
                logger.warning(f"Cannot write cooldown cache {self.path}: {e}")
                return False
        return True


class ScanHandle:
    """A dispatched detached scan."""

    def __init__(self, trigger: ScanTrigger, process: subprocess.Popen):
        self.trigger = trigger
        self.process = process

    @property
    def pid(self) -> int:
        return self.process.pid

    def poll(self) -> int | None:
        return self.process.poll()


class ReconciliationScheduler:
    """Decides when to scan and launches the scan out of process."""

    def __init__(
        self,
        config: Settings | None = None,
        vcs: VcsClient | None = None,
        cache: CooldownCache | None = None,
    ):
        self.config = config or settings
        self.vcs = vcs or VcsClient(config=self.config)
        self.cache = cache or CooldownCache(config=self.config)

    def should_scan(self, repo_id: str, trigger: ScanTrigger, force: bool = False, now: datetime | None = None) -> bool:
        if force or trigger.forces_scan:
            return True
        last = self.cache.last_scan(repo_id)
        if last is None:
            return True
        now = now or utcnow()
        return now - last >= timedelta(hours=self.config.scan_cooldown_hours)

    def build_command(self, cwd: Path | str, trigger: ScanTrigger, session_id: str | None = None) -> list[str]:
        python = self.config.python_executable or sys.executable
        command = [
            python,
            "-m",
            "agentrace.cli",
            "scan",
            "--repo",
            str(cwd),
            "--trigger",
            trigger.value,
            "--force",
            "--detached-run",
        ]
        if session_id:
            command.extend(["--session-id", session_id])
        return command

    def request_scan(
        self,
        cwd: Path | str,
        trigger: ScanTrigger,
        session_id: str | None = None,
        force: bool = False,
        now: datetime | None = None,
    ) -> ScanHandle | None:
        """Dispatch a detached scan if the cooldown allows it. Never raises."""
        if self.config.disable_background_scan:
            logger.debug("Background scans disabled")
            return None
        if not self.vcs.is_repo(cwd):
            return None
        repo_id = self.vcs.repo_identifier(cwd)
        if not repo_id:
            return None
        if not self.should_scan(repo_id, trigger, force=force, now=now):
            logger.debug(f"Scan of {repo_id} skipped, within cooldown")
            return None

        previous = self.cache.last_scan(repo_id)
        self.cache.record(repo_id, now or utcnow())
        command = self.build_command(cwd, trigger, session_id)
        try:
            process = subprocess.Popen(
                command,
                cwd=cwd,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                start_new_session=True,
                close_fds=True,
            )
        except (OSError, subprocess.SubprocessError) as e:
            logger.warning(f"Failed to dispatch scan for {repo_id}: {e}")
            # no scan ran, so the next hook may try again
            self.cache.record(repo_id, previous)
            return None

        logger.info(f"Dispatched {trigger.value} scan of {repo_id} as pid {process.pid}")
        return ScanHandle(trigger, process)


class ReconciliationScanner:
    """Runs one reconciliation scan in the current process."""

    def __init__(self, db: EventDatabase, miner: GitMiner | None = None, config: Settings | None = None):
        self.db = db
        self.config = config or settings
        self.miner = miner or GitMiner(db, config=self.config)

    def run(self, cwd: Path | str, trigger: ScanTrigger, session_id: str | None = None) -> ScanReport:
        """Scan one repository.

        Scans of the same repository are serialized. A push or PR-create scan
        waits up to ``scan_lock_wait`` seconds for a running scan to finish,
        any other trigger gives up at once. Only those two triggers follow an
        assistant action, so only they claim the checked-out branch's PR for
        ``session_id``.
        """
        report = ScanReport(trigger=trigger)
        report.repository = self.miner.vcs.repo_identifier(cwd)
        if not report.repository:
            logger.info(f"{cwd} is not a git repository, nothing to scan")
            report.skipped = True
            return report

        timeout = self.config.scan_lock_wait if trigger.forces_scan else 0
        lock = AgentraceLock(scan_lock_name(report.repository), timeout=timeout, config=self.config)

        with lock.acquire() as acquired:
            if not acquired:
                logger.info(f"Another scan of {report.repository} is running, skipping")
                report.skipped = True
                return report

            if session_id:
                if trigger.forces_scan:
                    owner, source = session_id, PRDataSource.CLAUDE
                else:
                    owner, source = None, PRDataSource.HUMAN
                branch_pr = self._step(
                    report,
                    "branch_pr",
                    lambda: self.miner.sync_branch_pr(cwd, session_id=owner, data_source=source),
                )
                report.branch_pr = branch_pr.number if branch_pr else None

            added = self._step(report, "commits", lambda: self.miner.mine_recent(cwd))
            report.commits_added = len(added or [])

            report.prs_ingested = self._step(report, "pull_requests", lambda: self._ingest_recent_prs(cwd)) or 0

        logger.info(
            f"Scan of {report.repository} ({trigger.value}): {report.commits_added} commits, "
            f"{report.prs_ingested} PRs, {len(report.errors)} errors"
        )
        return report

    def _ingest_recent_prs(self, cwd: Path | str) -> int:
        ingested = 0
        for pr in self.miner.host.list_recent_prs(cwd, self.config.scan_pr_limit):
            try:
                if self.miner.ingest_pr(cwd, pr.number, data_source=PRDataSource.HUMAN):
                    ingested += 1
            except Exception as e:
                logger.warning(f"Failed to ingest PR #{pr.number}: {e}")
        return ingested

    def _step(self, report: ScanReport, name: str, work):
        try:
            return work()
        except Exception as e:
            logger.exception(f"Scan step {name} failed")
            report.errors.append(f"{name}: {e}")
            return None
