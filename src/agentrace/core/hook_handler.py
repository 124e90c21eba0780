"""Hook handler script invoked by Claude Code for each event.

One process handles one event read from stdin and always exits 0, so a
tracking failure can never block the assistant.
"""

import json
import logging
import sys
from collections.abc import Callable
from pathlib import Path
from typing import IO, Any

from pydantic import ValidationError

from agentrace.core.cost_accountant import CostAccountant
from agentrace.core.database import EventDatabase
from agentrace.core.errors import ParseError, StoreBusyError
from agentrace.core.git_miner import GitMiner, classify_bash_command
from agentrace.core.git_tracker import VcsClient
from agentrace.core.host_client import HostClient
from agentrace.core.logging_config import configure_logging
from agentrace.core.models import (
    HookEventType,
    HookInputUnion,
    PostToolUseInput,
    PreToolUseInput,
    ScanTrigger,
    StopInput,
    UserPromptSubmitInput,
)
from agentrace.core.models.hook import hook_input_adapter, normalize_hook_payload
from agentrace.core.process import CommandRunner
from agentrace.core.scheduler import ReconciliationScheduler
from agentrace.core.settings import Settings, settings
from agentrace.core.tracker import SessionTracker

logger = logging.getLogger(__name__)


def parse_hook_input(raw_data: Any) -> HookInputUnion:
    """Validate a hook payload into its event model.

    Raises:
        ParseError: unknown event name or malformed payload.
    """
    if not isinstance(raw_data, dict):
        raise ParseError(f"Hook payload must be a JSON object, got {type(raw_data).__name__}")
    try:
        return hook_input_adapter.validate_python(normalize_hook_payload(raw_data))
    except ValidationError as e:
        event = raw_data.get("hook_event_name")
        raise ParseError(f"Invalid {event or 'unnamed'} hook payload: {e.error_count()} error(s)") from e


class HookDispatcher:
    """Routes a parsed event to the tracker, miner, accountant and scheduler."""

    def __init__(self, config: Settings | None = None, runner: CommandRunner | None = None):
        self.config = config or settings
        self.db = EventDatabase(config=self.config)
        self.vcs = VcsClient(runner=runner, config=self.config)
        self.host = HostClient(runner=runner, config=self.config)
        self.tracker = SessionTracker(self.db, vcs=self.vcs, config=self.config)
        self.miner = GitMiner(self.db, vcs=self.vcs, host=self.host, config=self.config)
        self.accountant = CostAccountant(self.db, config=self.config)
        self.scheduler = ReconciliationScheduler(config=self.config, vcs=self.vcs)

    def dispatch(self, parsed: HookInputUnion) -> None:
        match parsed:
            case UserPromptSubmitInput():
                self.tracker.start_turn(
                    parsed.session_id, parsed.prompt, cwd=parsed.cwd, transcript_path=parsed.transcript_path
                )
            case PreToolUseInput():
                self.tracker.record_tool_start(
                    parsed.session_id,
                    parsed.tool_name,
                    parsed.tool_input,
                    cwd=parsed.cwd,
                    transcript_path=parsed.transcript_path,
                )
            case PostToolUseInput():
                self.tracker.record_tool_end(
                    parsed.session_id,
                    parsed.tool_name,
                    parsed.resolved_success(),
                    error=parsed.resolved_error(),
                    duration_ms=parsed.resolved_duration_ms(),
                )
                if parsed.tool_name == "Bash":
                    self._isolated("bash follow-up", lambda: self._after_bash(parsed))
            case StopInput():
                self.tracker.end_turn(parsed.session_id)
                self._isolated("cost ingestion", lambda: self._ingest_costs(parsed))
                if parsed.cwd:
                    self._isolated("scan request", lambda: self._request_stop_scan(parsed))

    def _request_stop_scan(self, parsed: StopInput) -> None:
        if parsed.cwd and Path(parsed.cwd).is_dir():
            self.scheduler.request_scan(parsed.cwd, ScanTrigger.STOP, session_id=parsed.session_id)

    def _after_bash(self, parsed: PostToolUseInput) -> None:
        if not parsed.cwd or not parsed.resolved_success():
            return
        effect = classify_bash_command(parsed.tool_input.get("command"))
        if effect.mines_commits:
            self.miner.mine_turn_commits(parsed.session_id, parsed.cwd)
        if effect.scan_trigger is not None:
            self.scheduler.request_scan(parsed.cwd, effect.scan_trigger, session_id=parsed.session_id, force=True)

    def _ingest_costs(self, parsed: StopInput) -> None:
        if not parsed.transcript_path or not Path(parsed.transcript_path).is_file():
            return
        self.accountant.ingest_transcript(parsed.session_id, parsed.transcript_path)

    def _isolated(self, name: str, work: Callable[[], object]) -> None:
        try:
            work()
        except StoreBusyError as e:
            logger.warning(f"{name} dropped: {e}")
        except Exception:
            logger.exception(f"{name} failed")


def handle_hook(
    event_type_override: HookEventType | None = None,
    stdin: IO[str] | None = None,
    config: Settings | None = None,
    runner: CommandRunner | None = None,
) -> int:
    """Main hook handler function.

    Args:
        event_type_override: Event type forced by a dedicated hook entrypoint,
            used when the payload lacks ``hook_event_name``.
    """
    config = config or settings
    configure_logging(config)

    try:
        stdin_input = (stdin or sys.stdin).read().strip()
        if not stdin_input:
            return 0

        try:
            raw_data = json.loads(stdin_input)
        except json.JSONDecodeError as e:
            raise ParseError(f"Hook payload is not JSON: {e}") from e

        if event_type_override is not None and isinstance(raw_data, dict):
            raw_data["hook_event_name"] = event_type_override.value

        parsed_input = parse_hook_input(raw_data)
        HookDispatcher(config=config, runner=runner).dispatch(parsed_input)

    except StoreBusyError as e:
        logger.warning(f"Dropping hook event, store busy: {e}")
    except ParseError as e:
        logger.warning(f"Dropping hook event: {e}")
    except Exception:
        logger.exception("Hook handling failed")

    return 0


def main() -> None:
    """Entry point for hook handler script."""
    sys.exit(handle_hook())


if __name__ == "__main__":
    main()
