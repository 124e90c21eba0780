"""Token usage and cost models."""

from datetime import datetime

from pydantic import BaseModel, Field


class ModelPricing(BaseModel):
    """USD per million tokens for each usage category."""

    input: float
    output: float
    cache_write: float
    cache_read: float


class UsageCounts(BaseModel):
    """Token counts from one assistant message."""

    input_tokens: int = 0
    output_tokens: int = 0
    cache_creation_input_tokens: int = 0
    cache_read_input_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return (
            self.input_tokens
            + self.output_tokens
            + self.cache_creation_input_tokens
            + self.cache_read_input_tokens
        )


class CostBreakdown(BaseModel):
    input_cost: float = 0.0
    output_cost: float = 0.0
    cache_write_cost: float = 0.0
    cache_read_cost: float = 0.0

    @property
    def total_cost(self) -> float:
        return self.input_cost + self.output_cost + self.cache_write_cost + self.cache_read_cost


class TranscriptUsage(BaseModel):
    """One deduplicated usage record parsed from a transcript."""

    message_id: str
    model: str | None = None
    timestamp: datetime | None = None
    usage: UsageCounts = Field(default_factory=UsageCounts)


class TokenUsageRecord(BaseModel):
    """A priced usage record, unique by message id."""

    message_id: str
    session_id: str
    turn_number: int | None = None
    model: str | None = None
    timestamp: datetime | None = None
    input_tokens: int = 0
    output_tokens: int = 0
    cache_creation_tokens: int = 0
    cache_read_tokens: int = 0
    input_cost_usd: float = 0.0
    output_cost_usd: float = 0.0
    cache_write_cost_usd: float = 0.0
    cache_read_cost_usd: float = 0.0
    total_cost_usd: float = 0.0


class TurnCost(BaseModel):
    turn_number: int | None
    messages: int = 0
    total_tokens: int = 0
    total_cost_usd: float = 0.0


class PRCostSummary(BaseModel):
    """Cost of the development window that ended with a PR being opened."""

    repository: str
    pr_number: int
    window_start: datetime
    window_end: datetime
    total_cost_usd: float = 0.0
    total_tokens: int = 0
    commits: int = 0
    lines_changed: int = 0

    @property
    def cost_per_commit(self) -> float | None:
        if not self.commits:
            return None
        return self.total_cost_usd / self.commits

    @property
    def cost_per_line(self) -> float | None:
        if not self.lines_changed:
            return None
        return self.total_cost_usd / self.lines_changed
