"""Process transport for the git and gh command-line tools."""

import logging
import subprocess
from pathlib import Path
from typing import Protocol

from pydantic import BaseModel

from agentrace.core.errors import ExternalToolError

logger = logging.getLogger(__name__)


class CommandResult(BaseModel):
    args: list[str]
    returncode: int
    stdout: str = ""
    stderr: str = ""


class CommandRunner(Protocol):
    """Runs one external command. Failures raise ``ExternalToolError``."""

    def run(self, args: list[str], cwd: Path | str | None = None, timeout: float = 10.0) -> CommandResult: ...


class SubprocessRunner:
    """``CommandRunner`` backed by ``subprocess.run``."""

    def run(self, args: list[str], cwd: Path | str | None = None, timeout: float = 10.0) -> CommandResult:
        try:
            result = subprocess.run(
                args,
                cwd=cwd,
                capture_output=True,
                text=True,
                timeout=timeout,
                stdin=subprocess.DEVNULL,
            )
        except subprocess.TimeoutExpired as e:
            raise ExternalToolError(args, None, f"timeout after {timeout}s") from e
        except (subprocess.SubprocessError, OSError) as e:
            raise ExternalToolError(args, None, str(e)) from e

        if result.returncode != 0:
            raise ExternalToolError(args, result.returncode, result.stderr or "")

        return CommandResult(args=list(args), returncode=result.returncode, stdout=result.stdout, stderr=result.stderr)
