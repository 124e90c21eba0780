"""Models package for agentrace.

Re-exports all model types from submodules for convenience.
"""

from agentrace.core.models.cost import (
    CostBreakdown,
    ModelPricing,
    PRCostSummary,
    TokenUsageRecord,
    TranscriptUsage,
    TurnCost,
    UsageCounts,
)
from agentrace.core.models.git import (
    CheckRun,
    CheckSource,
    CISummary,
    CommitDataSource,
    CommitInfo,
    CommitRecord,
    CommitStats,
    PRDataSource,
    PullRequestInfo,
    PullRequestRecord,
    QualityMetric,
    QualityProvenance,
    ScanReport,
    ScanTrigger,
)
from agentrace.core.models.hook import (
    HookEventType,
    HookInputUnion,
    PostToolUseInput,
    PreToolUseInput,
    StopInput,
    UserPromptSubmitInput,
)
from agentrace.core.models.session import (
    IntentLabel,
    IntentRecord,
    Session,
    SessionDetail,
    SessionSummary,
    ToolExecution,
    ToolStats,
    Turn,
    TurnState,
)

__all__ = [
    "CISummary",
    "CheckRun",
    "CheckSource",
    "CommitDataSource",
    "CommitInfo",
    "CommitRecord",
    "CommitStats",
    "CostBreakdown",
    "HookEventType",
    "HookInputUnion",
    "IntentLabel",
    "IntentRecord",
    "ModelPricing",
    "PRCostSummary",
    "PRDataSource",
    "PostToolUseInput",
    "PreToolUseInput",
    "PullRequestInfo",
    "PullRequestRecord",
    "QualityMetric",
    "QualityProvenance",
    "ScanReport",
    "ScanTrigger",
    "Session",
    "SessionDetail",
    "SessionSummary",
    "StopInput",
    "TokenUsageRecord",
    "ToolExecution",
    "ToolStats",
    "TranscriptUsage",
    "Turn",
    "TurnCost",
    "TurnState",
    "UsageCounts",
    "UserPromptSubmitInput",
]
