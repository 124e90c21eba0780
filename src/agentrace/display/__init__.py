"""Display and formatting utilities for agentrace."""

from agentrace.display.formatters import (
    create_prs_table,
    create_sessions_table,
    create_tool_stats_table,
    display_session_detail,
)

__all__ = [
    "create_prs_table",
    "create_sessions_table",
    "create_tool_stats_table",
    "display_session_detail",
]
