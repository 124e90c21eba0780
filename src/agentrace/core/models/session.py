"""Session, turn and tool execution models."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field


class TurnState(str, Enum):
    """Lifecycle of a turn. NEW turns exist only until their insert commits."""

    NEW = "new"
    OPEN = "open"
    CLOSED = "closed"
    INTERRUPTED = "interrupted"


class Session(BaseModel):
    """One continuous conversation with the assistant."""

    session_id: str
    user_id: str
    started_at: datetime
    last_activity_at: datetime
    cwd: str | None = None
    transcript_path: str | None = None
    total_turns: int = 0
    total_tools_used: int = 0
    total_interruptions: int = 0


class Turn(BaseModel):
    """One user-prompt-to-stop cycle within a session."""

    id: int | None = None
    session_id: str
    turn_number: int
    started_at: datetime
    ended_at: datetime | None = None
    was_interrupted: bool = False
    interrupted_at: datetime | None = None
    start_head_sha: str | None = None

    @property
    def state(self) -> TurnState:
        if self.ended_at is None:
            return TurnState.OPEN
        if self.was_interrupted:
            return TurnState.INTERRUPTED
        return TurnState.CLOSED


class IntentLabel(str, Enum):
    """Coarse purpose of a user prompt."""

    BUGFIX = "bugfix"
    FEATURE = "feature"
    REFACTOR = "refactor"
    TEST = "test"
    DOCS = "docs"
    QUESTION = "question"
    REVIEW = "review"
    OPS = "ops"
    UNKNOWN = "unknown"


class IntentRecord(BaseModel):
    """Classified intent of the prompt that opened a turn."""

    session_id: str
    turn_number: int
    intent: IntentLabel = IntentLabel.UNKNOWN
    confidence: float = 0.0
    prompt: str = ""
    signals: list[str] = Field(default_factory=list)
    created_at: datetime | None = None


class ToolExecution(BaseModel):
    """A single tool call, opened by PreToolUse and completed by PostToolUse."""

    id: int | None = None
    session_id: str
    turn_number: int | None = None
    tool_name: str
    tool_input: str | None = None
    started_at: datetime
    completed_at: datetime | None = None
    success: bool | None = None
    error_message: str | None = None
    duration_ms: int | None = None
    sequence_number: int
    previous_tool: str | None = None


class ToolStats(BaseModel):
    """Running aggregate for one tool name."""

    tool_name: str
    total_calls: int = 0
    success_count: int = 0
    failure_count: int = 0
    avg_duration_ms: float = 0.0
    success_rate: float = 0.0
    last_used_at: datetime | None = None


class SessionSummary(BaseModel):
    """Row shown by the sessions listing."""

    session_id: str
    started_at: datetime
    last_activity_at: datetime
    cwd: str | None = None
    total_turns: int = 0
    total_tools_used: int = 0
    total_interruptions: int = 0
    commits: int = 0
    total_cost_usd: float = 0.0


class SessionDetail(BaseModel):
    """Everything the ``show`` command prints for a session."""

    session: Session
    turns: list[Turn] = Field(default_factory=list)
    tool_counts: dict[str, int] = Field(default_factory=dict)
    intents: dict[int, str] = Field(default_factory=dict)
    commits: int = 0
    total_cost_usd: float = 0.0
