"""Error taxonomy for agentrace.

None of these are allowed to escape a hook invocation. They exist so each
layer can tell a retryable or skippable condition apart from a real bug.
"""


class AgentraceError(Exception):
    """Base class for all agentrace errors."""


class StoreBusyError(AgentraceError):
    """The SQLite store stayed locked through every retry."""

    def __init__(self, attempts: int, last_error: Exception | None = None):
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"Store still locked after {attempts} attempt(s): {last_error}")


class ExternalToolError(AgentraceError):
    """An external process exited non-zero, timed out or could not start."""

    def __init__(self, command: list[str], returncode: int | None = None, stderr: str = ""):
        self.command = command
        self.returncode = returncode
        self.stderr = stderr
        status = "did not complete" if returncode is None else f"exited {returncode}"
        super().__init__(f"{' '.join(command[:3])} {status}: {stderr.strip()[:200]}")


class ParseError(AgentraceError):
    """Malformed hook payload, transcript line or quality report text."""


class SchemaDriftError(AgentraceError):
    """A migration failed for a reason other than the column already existing."""
