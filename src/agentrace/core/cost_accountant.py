"""Token usage pricing and cost rollups from session transcripts."""

import json
import logging
from pathlib import Path

from agentrace.core.database import EventDatabase
from agentrace.core.models import (
    CostBreakdown,
    ModelPricing,
    PRCostSummary,
    TokenUsageRecord,
    TranscriptUsage,
    TurnCost,
    UsageCounts,
)
from agentrace.core.settings import Settings, settings
from agentrace.core.timestamps import parse_timestamp

logger = logging.getLogger(__name__)

TOKENS_PER_UNIT = 1_000_000

# USD per million tokens
PRICING_TABLE: dict[str, ModelPricing] = {
    "claude-opus-4-5": ModelPricing(input=5.00, output=25.00, cache_write=6.25, cache_read=0.50),
    "claude-opus-4-1": ModelPricing(input=15.00, output=75.00, cache_write=18.75, cache_read=1.50),
    "claude-opus-4": ModelPricing(input=15.00, output=75.00, cache_write=18.75, cache_read=1.50),
    "claude-sonnet-4-5": ModelPricing(input=3.00, output=15.00, cache_write=3.75, cache_read=0.30),
    "claude-sonnet-4": ModelPricing(input=3.00, output=15.00, cache_write=3.75, cache_read=0.30),
    "claude-3-7-sonnet": ModelPricing(input=3.00, output=15.00, cache_write=3.75, cache_read=0.30),
    "claude-3-5-sonnet": ModelPricing(input=3.00, output=15.00, cache_write=3.75, cache_read=0.30),
    "claude-haiku-4-5": ModelPricing(input=1.00, output=5.00, cache_write=1.25, cache_read=0.10),
    "claude-3-5-haiku": ModelPricing(input=0.80, output=4.00, cache_write=1.00, cache_read=0.08),
    "claude-3-haiku": ModelPricing(input=0.25, output=1.25, cache_write=0.30, cache_read=0.03),
    "claude-3-opus": ModelPricing(input=15.00, output=75.00, cache_write=18.75, cache_read=1.50),
}


def resolve_pricing(model: str | None, default_model: str) -> ModelPricing:
    """Exact model id, then the longest family prefix, then ``default_model``."""
    if model:
        if model in PRICING_TABLE:
            return PRICING_TABLE[model]
        prefixes = [family for family in PRICING_TABLE if model.startswith(family)]
        if prefixes:
            return PRICING_TABLE[max(prefixes, key=len)]
        logger.debug(f"No pricing for model {model}, using {default_model}")
    if default_model in PRICING_TABLE:
        return PRICING_TABLE[default_model]
    return PRICING_TABLE["claude-sonnet-4-5"]


def calculate_cost(usage: UsageCounts, pricing: ModelPricing) -> CostBreakdown:
    return CostBreakdown(
        input_cost=usage.input_tokens * pricing.input / TOKENS_PER_UNIT,
        output_cost=usage.output_tokens * pricing.output / TOKENS_PER_UNIT,
        cache_write_cost=usage.cache_creation_input_tokens * pricing.cache_write / TOKENS_PER_UNIT,
        cache_read_cost=usage.cache_read_input_tokens * pricing.cache_read / TOKENS_PER_UNIT,
    )


def _usage_from_dict(raw: dict) -> UsageCounts:
    def count(key: str) -> int:
        value = raw.get(key)
        return value if isinstance(value, int) and value > 0 else 0

    return UsageCounts(
        input_tokens=count("input_tokens"),
        output_tokens=count("output_tokens"),
        cache_creation_input_tokens=count("cache_creation_input_tokens"),
        cache_read_input_tokens=count("cache_read_input_tokens"),
    )


def parse_transcript_usage(path: Path | str) -> list[TranscriptUsage]:
    """Usage records of assistant messages, first record per message id.

    Streaming writes one transcript line per content block, all repeating the
    same message usage, so later duplicates are dropped.
    """
    transcript = Path(path)
    records: dict[str, TranscriptUsage] = {}

    try:
        with open(transcript, encoding="utf-8") as f:
            for line_number, line in enumerate(f, start=1):
                line = line.strip()
                if not line:
                    continue
                try:
                    entry = json.loads(line)
                except json.JSONDecodeError:
                    logger.warning(f"Skipping unparseable transcript line {line_number} in {transcript}")
                    continue
                if not isinstance(entry, dict) or entry.get("type") != "assistant":
                    continue
                message = entry.get("message")
                if not isinstance(message, dict) or not isinstance(message.get("usage"), dict):
                    continue
                message_id = message.get("id")
                if not message_id or message_id in records:
                    continue
                records[message_id] = TranscriptUsage(
                    message_id=message_id,
                    model=message.get("model"),
                    timestamp=parse_timestamp(entry.get("timestamp")),
                    usage=_usage_from_dict(message["usage"]),
                )
    except OSError as e:
        logger.warning(f"Cannot read transcript {transcript}: {e}")
        return []

    return list(records.values())


class CostAccountant:
    """Prices transcript usage into the store and rolls it up."""

    def __init__(self, db: EventDatabase, config: Settings | None = None):
        self.db = db
        self.config = config or settings

    def price(self, session_id: str, usage: TranscriptUsage, turn_number: int | None = None) -> TokenUsageRecord:
        pricing = resolve_pricing(usage.model, self.config.default_model)
        cost = calculate_cost(usage.usage, pricing)
        return TokenUsageRecord(
            message_id=usage.message_id,
            session_id=session_id,
            turn_number=turn_number,
            model=usage.model,
            timestamp=usage.timestamp,
            input_tokens=usage.usage.input_tokens,
            output_tokens=usage.usage.output_tokens,
            cache_creation_tokens=usage.usage.cache_creation_input_tokens,
            cache_read_tokens=usage.usage.cache_read_input_tokens,
            input_cost_usd=cost.input_cost,
            output_cost_usd=cost.output_cost,
            cache_write_cost_usd=cost.cache_write_cost,
            cache_read_cost_usd=cost.cache_read_cost,
            total_cost_usd=cost.total_cost,
        )

    def ingest_transcript(self, session_id: str, path: Path | str) -> int:
        """Store new usage records from ``path``. Returns how many were inserted."""
        usages = parse_transcript_usage(path)
        if not usages:
            return 0

        def work(conn) -> int:
            inserted = 0
            for usage in usages:
                turn_number = self.db.find_turn_number_at(conn, session_id, usage.timestamp)
                if self.db.insert_token_usage(conn, self.price(session_id, usage, turn_number)):
                    inserted += 1
            if inserted:
                self.db.refresh_session_cost(conn, session_id)
            return inserted

        inserted = self.db.run_transaction(work)
        logger.debug(f"Ingested {inserted} new usage records for session {session_id}")
        return inserted

    def session_cost(self, session_id: str) -> float:
        cost, _, _ = self.db.read(lambda conn: self.db.sum_token_usage(conn, session_id))
        return cost

    def turn_costs(self, session_id: str) -> list[TurnCost]:
        rows = self.db.read(lambda conn: self.db.turn_usage(conn, session_id))
        return [
            TurnCost(turn_number=turn_number, messages=messages, total_tokens=tokens, total_cost_usd=cost)
            for turn_number, messages, tokens, cost in rows
        ]

    def pr_costs(self, session_id: str) -> list[PRCostSummary]:
        """Cost of each PR window: previous PR creation (or session start) to this PR's creation."""

        def work(conn) -> list[PRCostSummary]:
            session = self.db.get_session(conn, session_id)
            if session is None:
                return []
            summaries = []
            window_start = session.started_at
            for pr in self.db.get_session_pull_requests(conn, session_id):
                window_end = pr.created_at
                cost, tokens, _ = self.db.sum_token_usage(conn, session_id, window_start, window_end)
                commits = self.db.get_pr_commits(conn, pr.repository, pr.number)
                lines_changed = pr.additions + pr.deletions
                if not lines_changed:
                    lines_changed = sum(c.insertions + c.deletions for c in commits)
                summaries.append(
                    PRCostSummary(
                        repository=pr.repository,
                        pr_number=pr.number,
                        window_start=window_start,
                        window_end=window_end,
                        total_cost_usd=cost,
                        total_tokens=tokens,
                        commits=len(commits),
                        lines_changed=lines_changed,
                    )
                )
                window_start = window_end
            return summaries

        return self.db.read(work)
