"""Tests for the session, turn and tool execution state machine."""

import json
import sqlite3

import pytest

from agentrace.core.git_tracker import VcsClient
from agentrace.core.models import IntentLabel, ToolStats, TurnState
from agentrace.core.tracker import SessionTracker, update_tool_stats
from conftest import T0, at, git


@pytest.fixture
def tracker(db, config, fake_runner):
    return SessionTracker(db, vcs=VcsClient(runner=fake_runner, config=config), config=config)


def _turns(db, session_id):
    detail = db.get_session_detail(session_id)
    return detail.turns if detail else []


class TestTurns:
    def test_start_turn__creates_session_and_first_turn(self, tracker, db):
        turn = tracker.start_turn("s1", "Fix the login bug", cwd="/work", now=T0)

        assert turn.turn_number == 1
        session = db.read(lambda conn: db.get_session(conn, "s1"))
        assert session.total_turns == 1
        assert session.cwd == "/work"
        assert session.started_at == T0

    def test_start_turn__records_intent(self, tracker, db):
        tracker.start_turn("s1", "Fix the login bug", now=T0)

        detail = db.get_session_detail("s1")
        assert detail.intents[1] == IntentLabel.BUGFIX.value

    def test_start_turn__interrupts_open_turn(self, tracker, db):
        tracker.start_turn("s1", "first", now=T0)
        second = tracker.start_turn("s1", "second", now=at(30))

        turns = _turns(db, "s1")
        assert second.turn_number == 2
        assert turns[0].state == TurnState.INTERRUPTED
        assert turns[0].interrupted_at == at(30)
        assert turns[1].state == TurnState.OPEN
        session = db.read(lambda conn: db.get_session(conn, "s1"))
        assert session.total_interruptions == 1
        assert session.total_turns == 2

    def test_start_turn__captures_head_sha_of_repository(self, db, config, git_repo):
        tracker = SessionTracker(db, vcs=VcsClient(config=config), config=config)

        turn = tracker.start_turn("s1", "hello", cwd=str(git_repo), now=T0)

        assert turn.start_head_sha == git(git_repo, "rev-parse", "HEAD")

    def test_start_turn__skips_head_sha_for_missing_directory(self, tracker, fake_runner):
        turn = tracker.start_turn("s1", "hello", cwd="/does/not/exist", now=T0)

        assert turn.start_head_sha is None
        assert fake_runner.calls == []

    def test_end_turn__closes_open_turn(self, tracker, db):
        tracker.start_turn("s1", "hello", now=T0)

        closed = tracker.end_turn("s1", now=at(60))

        assert closed.ended_at == at(60)
        turns = _turns(db, "s1")
        assert turns[0].state == TurnState.CLOSED
        assert turns[0].was_interrupted is False

    def test_end_turn__without_open_turn_writes_nothing(self, tracker, db):
        assert tracker.end_turn("ghost", now=T0) is None
        assert db.read(lambda conn: db.get_session(conn, "ghost")) is None

    def test_end_turn__second_stop_is_noop(self, tracker, db):
        tracker.start_turn("s1", "hello", now=T0)
        tracker.end_turn("s1", now=at(10))

        assert tracker.end_turn("s1", now=at(20)) is None
        assert _turns(db, "s1")[0].ended_at == at(10)

    def test_turn_numbers__strictly_increase(self, tracker, db):
        for i in range(4):
            tracker.start_turn("s1", f"prompt {i}", now=at(i * 10))
            if i % 2:
                tracker.end_turn("s1", now=at(i * 10 + 5))

        assert [t.turn_number for t in _turns(db, "s1")] == [1, 2, 3, 4]


class TestToolExecutions:
    def test_record_tool_start__assigns_sequence_and_previous_tool(self, tracker):
        tracker.start_turn("s1", "go", now=T0)

        first = tracker.record_tool_start("s1", "Read", {"file_path": "a.py"}, now=at(1))
        second = tracker.record_tool_start("s1", "Bash", {"command": "ls"}, now=at(2))

        assert (first.sequence_number, first.previous_tool, first.turn_number) == (1, None, 1)
        assert (second.sequence_number, second.previous_tool) == (2, "Read")
        assert json.loads(second.tool_input) == {"command": "ls"}

    def test_record_tool_start__without_prompt_creates_session(self, tracker, db):
        execution = tracker.record_tool_start("s2", "Read", now=T0, cwd="/work")

        assert execution.turn_number is None
        session = db.read(lambda conn: db.get_session(conn, "s2"))
        assert session.total_tools_used == 1
        assert session.total_turns == 0

    def test_record_tool_start__truncates_large_input(self, tracker, db):
        tracker.record_tool_start("s1", "Write", {"content": "x" * 10000}, now=T0)

        stored = db.get_session_tool_executions("s1")[0]
        assert len(stored.tool_input) == 4000

    def test_record_tool_end__completes_with_explicit_duration(self, tracker, db):
        tracker.record_tool_start("s1", "Bash", {"command": "ls"}, now=T0)

        completed = tracker.record_tool_end("s1", "Bash", True, duration_ms=250, now=at(5))

        assert completed.duration_ms == 250
        stored = db.get_session_tool_executions("s1")[0]
        assert stored.success is True
        assert stored.completed_at == at(5)

    def test_record_tool_end__falls_back_to_wall_clock_duration(self, tracker):
        tracker.record_tool_start("s1", "Bash", now=T0)

        completed = tracker.record_tool_end("s1", "Bash", False, error="exit 1", now=at(1.5))

        assert completed.duration_ms == 1500
        assert completed.error_message == "exit 1"

    def test_record_tool_end__matches_most_recent_open_execution(self, tracker, db):
        tracker.record_tool_start("s1", "Bash", {"command": "sleep 10"}, now=T0)
        tracker.record_tool_start("s1", "Bash", {"command": "ls"}, now=at(1))

        completed = tracker.record_tool_end("s1", "Bash", True, now=at(2))

        assert completed.sequence_number == 2
        executions = db.get_session_tool_executions("s1")
        assert executions[0].completed_at is None

    def test_record_tool_end__unmatched_result_is_ignored(self, tracker, db):
        assert tracker.record_tool_end("s1", "Bash", True, now=T0) is None
        assert db.list_tool_stats() == []

    def test_record_tool_end__updates_tool_stats(self, tracker, db):
        for i, (success, duration) in enumerate([(True, 100), (False, 300), (True, 200)]):
            tracker.record_tool_start("s1", "Bash", now=at(i * 10))
            tracker.record_tool_end("s1", "Bash", success, duration_ms=duration, now=at(i * 10 + 1))

        stats = db.list_tool_stats()[0]
        assert stats.total_calls == 3
        assert stats.success_count == 2
        assert stats.failure_count == 1
        assert stats.avg_duration_ms == pytest.approx(200.0)
        assert stats.success_rate == pytest.approx(2 / 3)
        assert stats.last_used_at == at(21)

    def test_tool_executions__sequence_is_unique_per_session(self, tracker, db):
        for i in range(5):
            tracker.record_tool_start("s1", "Read", now=at(i))
            tracker.record_tool_start("s2", "Read", now=at(i))

        with sqlite3.connect(db.db_path) as conn:
            rows = conn.execute(
                "SELECT session_id, COUNT(*), COUNT(DISTINCT sequence_number) FROM tool_executions GROUP BY session_id"
            ).fetchall()
        assert rows == [("s1", 5, 5), ("s2", 5, 5)]


class TestUpdateToolStats:
    def test_update_tool_stats__running_mean(self):
        stats = ToolStats(tool_name="Read")

        stats = update_tool_stats(stats, True, 10, T0)
        stats = update_tool_stats(stats, True, 30, at(1))

        assert stats.avg_duration_ms == pytest.approx(20.0)
        assert stats.success_rate == 1.0
        assert stats.last_used_at == at(1)
