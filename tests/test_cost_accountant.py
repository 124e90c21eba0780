"""Tests for transcript cost accounting."""

import json

import pytest

from agentrace.core.cost_accountant import (
    PRICING_TABLE,
    CostAccountant,
    calculate_cost,
    parse_transcript_usage,
    resolve_pricing,
)
from agentrace.core.models import PRDataSource, PullRequestRecord, UsageCounts
from agentrace.core.tracker import SessionTracker
from conftest import at


def _assistant_line(message_id: str, seconds: float, model: str = "claude-sonnet-4-5-20250929", **usage) -> str:
    return json.dumps(
        {
            "type": "assistant",
            "timestamp": at(seconds).isoformat().replace("+00:00", "Z"),
            "message": {"id": message_id, "model": model, "usage": usage},
        }
    )


def _write_transcript(path, lines: list[str]):
    path.write_text("\n".join(lines) + "\n")
    return path


@pytest.fixture
def accountant(db, config):
    return CostAccountant(db, config=config)


class TestPricing:
    def test_resolve_pricing__exact_id(self):
        assert resolve_pricing("claude-opus-4-1", "claude-sonnet-4-5") == PRICING_TABLE["claude-opus-4-1"]

    def test_resolve_pricing__longest_prefix_wins(self):
        pricing = resolve_pricing("claude-opus-4-5-20251101", "claude-sonnet-4-5")

        assert pricing == PRICING_TABLE["claude-opus-4-5"]

    def test_resolve_pricing__unknown_model_uses_default(self):
        assert resolve_pricing("gpt-oss", "claude-haiku-4-5") == PRICING_TABLE["claude-haiku-4-5"]
        assert resolve_pricing(None, "claude-haiku-4-5") == PRICING_TABLE["claude-haiku-4-5"]

    def test_calculate_cost__per_million_tokens(self):
        usage = UsageCounts(
            input_tokens=1_000_000,
            output_tokens=100_000,
            cache_creation_input_tokens=200_000,
            cache_read_input_tokens=1_000_000,
        )

        cost = calculate_cost(usage, PRICING_TABLE["claude-sonnet-4-5"])

        assert cost.input_cost == pytest.approx(3.0)
        assert cost.output_cost == pytest.approx(1.5)
        assert cost.cache_write_cost == pytest.approx(0.75)
        assert cost.cache_read_cost == pytest.approx(0.3)
        assert cost.total_cost == pytest.approx(5.55)


class TestParseTranscript:
    def test_parse_transcript_usage__first_record_per_message_wins(self, tmp_path):
        transcript = _write_transcript(
            tmp_path / "t.jsonl",
            [
                json.dumps({"type": "user", "message": {"content": "hi"}}),
                _assistant_line("msg_1", 1, input_tokens=10, output_tokens=5),
                _assistant_line("msg_1", 2, input_tokens=10, output_tokens=50),
                "{broken json",
                _assistant_line("msg_2", 3, input_tokens=7, output_tokens=-3),
            ],
        )

        usages = parse_transcript_usage(transcript)

        assert [u.message_id for u in usages] == ["msg_1", "msg_2"]
        assert usages[0].usage.output_tokens == 5
        assert usages[0].timestamp == at(1)
        assert usages[1].usage.output_tokens == 0

    def test_parse_transcript_usage__missing_file_is_empty(self, tmp_path):
        assert parse_transcript_usage(tmp_path / "missing.jsonl") == []


class TestCostAccountant:
    def test_ingest_transcript__is_idempotent(self, accountant, db, tmp_path):
        transcript = _write_transcript(
            tmp_path / "t.jsonl", [_assistant_line("msg_1", 1, input_tokens=1_000_000, output_tokens=0)]
        )

        assert accountant.ingest_transcript("s1", transcript) == 1
        assert accountant.ingest_transcript("s1", transcript) == 0
        assert accountant.session_cost("s1") == pytest.approx(3.0)

    def test_ingest_transcript__assigns_turn_by_timestamp(self, accountant, db, config, tmp_path):
        tracker = SessionTracker(db, config=config)
        tracker.start_turn("s1", "one", now=at(0))
        tracker.end_turn("s1", now=at(10))
        tracker.start_turn("s1", "two", now=at(20))
        transcript = _write_transcript(
            tmp_path / "t.jsonl",
            [
                _assistant_line("m1", 5, output_tokens=1000),
                _assistant_line("m2", 15, output_tokens=1000),
                _assistant_line("m3", 25, output_tokens=1000),
            ],
        )

        accountant.ingest_transcript("s1", transcript)

        turn_costs = {c.turn_number: c for c in accountant.turn_costs("s1")}
        assert set(turn_costs) == {None, 1, 2}
        assert turn_costs[1].messages == 1
        assert turn_costs[2].total_tokens == 1000
        detail = db.get_session_detail("s1")
        assert detail.total_cost_usd == pytest.approx(3 * 1000 * 15 / 1_000_000)

    def test_pr_costs__windows_between_pr_creations(self, accountant, db, config, tmp_path):
        SessionTracker(db, config=config).start_turn("s1", "build it", now=at(0))
        transcript = _write_transcript(
            tmp_path / "t.jsonl",
            [
                _assistant_line("m1", 10, input_tokens=1_000_000),
                _assistant_line("m2", 110, input_tokens=2_000_000),
                _assistant_line("m3", 210, input_tokens=5_000_000),
            ],
        )
        accountant.ingest_transcript("s1", transcript)
        for number, created in ((1, at(100)), (2, at(200))):
            pr = PullRequestRecord(
                repository="acme/widgets",
                number=number,
                created_at=created,
                additions=30,
                deletions=10,
                session_id="s1",
                data_source=PRDataSource.CLAUDE,
            )
            db.run_transaction(lambda conn, pr=pr: db.upsert_pull_request(conn, pr))

        costs = accountant.pr_costs("s1")

        assert [c.pr_number for c in costs] == [1, 2]
        assert costs[0].total_cost_usd == pytest.approx(3.0)
        assert costs[1].total_cost_usd == pytest.approx(6.0)
        assert costs[1].window_start == at(100)
        assert costs[0].cost_per_line == pytest.approx(3.0 / 40)
        assert costs[0].cost_per_commit is None

    def test_pr_costs__unknown_session(self, accountant):
        assert accountant.pr_costs("ghost") == []
