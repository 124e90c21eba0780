"""Shared test fixtures and helpers."""

import json
import subprocess
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from agentrace.core.database import EventDatabase
from agentrace.core.errors import ExternalToolError
from agentrace.core.process import CommandResult
from agentrace.core.settings import Settings

T0 = datetime(2025, 3, 1, 12, 0, 0, tzinfo=UTC)


def at(seconds: float) -> datetime:
    """Fixed timestamp ``seconds`` after T0."""
    return T0 + timedelta(seconds=seconds)


class FakeRunner:
    """``CommandRunner`` that answers from canned responses keyed by argument prefix.

    The longest matching prefix wins. Unknown commands fail like a non-zero exit.
    """

    def __init__(self):
        self.responses: list[tuple[tuple[str, ...], str, int]] = []
        self.calls: list[list[str]] = []

    def add(self, prefix: list[str] | tuple[str, ...], stdout: str | dict | list = "", returncode: int = 0):
        if not isinstance(stdout, str):
            stdout = json.dumps(stdout)
        self.responses.append((tuple(prefix), stdout, returncode))
        return self

    def run(self, args: list[str], cwd=None, timeout: float = 10.0) -> CommandResult:
        self.calls.append(list(args))
        matches = [r for r in self.responses if tuple(args[: len(r[0])]) == r[0]]
        if not matches:
            raise ExternalToolError(list(args), 1, "no canned response")
        prefix, stdout, returncode = max(matches, key=lambda r: len(r[0]))
        if returncode != 0:
            raise ExternalToolError(list(args), returncode, stdout)
        return CommandResult(args=list(args), returncode=0, stdout=stdout)

    def called(self, *prefix: str) -> bool:
        return any(tuple(call[: len(prefix)]) == prefix for call in self.calls)


@pytest.fixture
def config(tmp_path) -> Settings:
    return Settings(
        data_dir=tmp_path / "data",
        user_id="tester",
        store_retry_base_delay=0.0,
        store_retry_step=0.0,
        disable_background_scan=True,
    )


@pytest.fixture
def db(config) -> EventDatabase:
    return EventDatabase(config=config)


@pytest.fixture
def fake_runner() -> FakeRunner:
    return FakeRunner()


def git(cwd: Path, *args: str) -> str:
    result = subprocess.run(["git", *args], cwd=cwd, check=True, capture_output=True, text=True)
    return result.stdout.strip()


def commit_file(repo: Path, name: str, content: str, message: str) -> str:
    (repo / name).write_text(content)
    git(repo, "add", name)
    git(repo, "commit", "-q", "-m", message)
    return git(repo, "rev-parse", "HEAD")


@pytest.fixture
def git_repo(tmp_path) -> Path:
    """A real repository on branch ``main`` with two commits and a GitHub-style origin."""
    repo = tmp_path / "repo"
    repo.mkdir()
    git(repo, "init", "-q")
    git(repo, "symbolic-ref", "HEAD", "refs/heads/main")
    git(repo, "config", "user.email", "test@example.com")
    git(repo, "config", "user.name", "Test User")
    git(repo, "config", "commit.gpgsign", "false")
    git(repo, "remote", "add", "origin", "git@github.com:acme/widgets.git")

    commit_file(repo, "main.py", "print('hello')\n", "Initial commit")
    commit_file(repo, "utils.py", "def foo():\n    pass\n", "Add utils")
    return repo
