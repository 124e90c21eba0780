"""Session, turn and tool execution state machine.

Each method reads the current state and writes the transition inside one
exclusive transaction, so concurrent hook processes for the same session
cannot hand out the same turn or sequence number twice.
"""

import json
import logging
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Any

from agentrace.core.database import EventDatabase
from agentrace.core.git_tracker import VcsClient
from agentrace.core.intent import classify_prompt
from agentrace.core.models import IntentRecord, ToolExecution, ToolStats, Turn
from agentrace.core.settings import Settings, settings
from agentrace.core.timestamps import utcnow

logger = logging.getLogger(__name__)


class SessionTracker:
    """Records turns and tool calls for assistant sessions."""

    def __init__(self, db: EventDatabase, vcs: VcsClient | None = None, config: Settings | None = None):
        self.db = db
        self.config = config or settings
        self.vcs = vcs or VcsClient(config=self.config)

    def start_turn(
        self,
        session_id: str,
        prompt: str = "",
        cwd: str | None = None,
        now: datetime | None = None,
        transcript_path: str | None = None,
    ) -> Turn:
        """Open the next turn, interrupting any turn still open."""
        now = now or utcnow()
        start_head_sha = self.vcs.head_sha(cwd) if cwd and Path(cwd).is_dir() else None
        intent = classify_prompt(prompt)

        def work(conn: sqlite3.Connection) -> Turn:
            self.db.ensure_session(conn, session_id, now, cwd, transcript_path)

            open_turn = self.db.get_open_turn(conn, session_id)
            if open_turn is not None and open_turn.id is not None:
                self.db.close_turn(conn, open_turn.id, now, interrupted=True)
                self.db.increment_session_counters(conn, session_id, interruptions=1)
                logger.info(f"Turn {open_turn.turn_number} of {session_id} interrupted by a new prompt")

            turn = Turn(
                session_id=session_id,
                turn_number=self.db.next_turn_number(conn, session_id),
                started_at=now,
                start_head_sha=start_head_sha,
            )
            turn.id = self.db.insert_turn(conn, turn)
            self.db.increment_session_counters(conn, session_id, turns=1)
            self.db.insert_intent(
                conn,
                IntentRecord(
                    session_id=session_id,
                    turn_number=turn.turn_number,
                    intent=intent.label,
                    confidence=intent.confidence,
                    prompt=prompt,
                    signals=intent.signals,
                    created_at=now,
                ),
            )
            return turn

        return self.db.run_transaction(work)

    def end_turn(self, session_id: str, now: datetime | None = None) -> Turn | None:
        """Close the open turn. Without an open turn nothing is written."""
        now = now or utcnow()

        def work(conn: sqlite3.Connection) -> Turn | None:
            open_turn = self.db.get_open_turn(conn, session_id)
            if open_turn is None or open_turn.id is None:
                return None
            self.db.close_turn(conn, open_turn.id, now, interrupted=False)
            self.db.ensure_session(conn, session_id, now)
            return open_turn.model_copy(update={"ended_at": now})

        turn = self.db.run_transaction(work)
        if turn is None:
            logger.debug(f"Stop for {session_id} with no open turn")
        return turn

    def record_tool_start(
        self,
        session_id: str,
        tool_name: str,
        tool_input: dict[str, Any] | None = None,
        now: datetime | None = None,
        cwd: str | None = None,
        transcript_path: str | None = None,
    ) -> ToolExecution:
        now = now or utcnow()
        serialized_input = json.dumps(tool_input, default=str) if tool_input else None

        def work(conn: sqlite3.Connection) -> ToolExecution:
            self.db.ensure_session(conn, session_id, now, cwd, transcript_path)
            open_turn = self.db.get_open_turn(conn, session_id)
            execution = ToolExecution(
                session_id=session_id,
                turn_number=open_turn.turn_number if open_turn else None,
                tool_name=tool_name,
                tool_input=serialized_input,
                started_at=now,
                sequence_number=self.db.next_tool_sequence(conn, session_id),
                previous_tool=self.db.last_started_tool_name(conn, session_id),
            )
            execution.id = self.db.insert_tool_execution(conn, execution)
            self.db.increment_session_counters(conn, session_id, tools=1)
            return execution

        return self.db.run_transaction(work)

    def record_tool_end(
        self,
        session_id: str,
        tool_name: str,
        success: bool,
        error: str | None = None,
        duration_ms: int | None = None,
        now: datetime | None = None,
    ) -> ToolExecution | None:
        """Complete the latest open execution of ``tool_name``. Unmatched results are ignored."""
        now = now or utcnow()

        def work(conn: sqlite3.Connection) -> ToolExecution | None:
            execution = self.db.find_open_tool_execution(conn, session_id, tool_name)
            if execution is None or execution.id is None:
                return None

            duration = duration_ms
            if not duration:
                duration = max(0, int((now - execution.started_at).total_seconds() * 1000))

            self.db.complete_tool_execution(conn, execution.id, now, success, duration, error)
            self.db.ensure_session(conn, session_id, now)

            stats = self.db.get_tool_stats(conn, tool_name) or ToolStats(tool_name=tool_name)
            self.db.save_tool_stats(conn, update_tool_stats(stats, success, duration, now))

            return execution.model_copy(
                update={"completed_at": now, "success": success, "duration_ms": duration, "error_message": error}
            )

        completed = self.db.run_transaction(work)
        if completed is None:
            logger.info(f"Unmatched PostToolUse for {tool_name} in {session_id}, ignoring")
        return completed


def update_tool_stats(stats: ToolStats, success: bool, duration_ms: int, now: datetime) -> ToolStats:
    """Fold one completed call into the running aggregate."""
    total = stats.total_calls + 1
    success_count = stats.success_count + (1 if success else 0)
    return ToolStats(
        tool_name=stats.tool_name,
        total_calls=total,
        success_count=success_count,
        failure_count=stats.failure_count + (0 if success else 1),
        avg_duration_ms=stats.avg_duration_ms + (duration_ms - stats.avg_duration_ms) / total,
        success_rate=success_count / total,
        last_used_at=now,
    )
