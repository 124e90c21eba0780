"""Rich formatting utilities for displaying agentrace data."""

from datetime import datetime

from rich.table import Table

from agentrace.core.models import CommitRecord, PRCostSummary, SessionDetail, SessionSummary, ToolStats, TurnCost
from agentrace.display.console import console
from agentrace.solo.services.session_service import PRReport

RATING_LETTERS = {1: "A", 2: "B", 3: "C", 4: "D", 5: "E"}


def _fmt_time(value: datetime | None) -> str:
    return value.strftime("%Y-%m-%d %H:%M:%S") if value else "N/A"


def _fmt_cost(value: float | None) -> str:
    return f"${value:.4f}" if value is not None else "N/A"


def _ci_cell(status: str | None, passed: int, failed: int) -> str:
    if status is None:
        return "[dim]none[/dim]"
    color = {"success": "green", "failure": "red", "pending": "yellow"}.get(status, "white")
    return f"[{color}]{status}[/{color}] ({passed}/{passed + failed})"


def create_sessions_table(sessions: list[SessionSummary]) -> Table:
    """Create a Rich table for displaying session list."""
    table = Table(title="Recent Sessions")
    table.add_column("Session ID", style="cyan")
    table.add_column("Last Activity", style="green")
    table.add_column("Directory", style="magenta")
    table.add_column("Turns", justify="right")
    table.add_column("Tools", justify="right")
    table.add_column("Interrupted", justify="right")
    table.add_column("Commits", justify="right")
    table.add_column("Cost", justify="right")

    for session in sessions:
        table.add_row(
            session.session_id,
            _fmt_time(session.last_activity_at),
            session.cwd or "N/A",
            str(session.total_turns),
            str(session.total_tools_used),
            str(session.total_interruptions),
            str(session.commits),
            _fmt_cost(session.total_cost_usd),
        )

    return table


def display_session_detail(
    detail: SessionDetail, turn_costs: list[TurnCost], pr_costs: list[PRCostSummary]
) -> None:
    """Print turns, tool usage and cost for a session."""
    session = detail.session
    console.print(f"\n[bold]Session: {session.session_id}[/bold]")
    console.print(f"Started: {_fmt_time(session.started_at)}")
    console.print(f"Last activity: {_fmt_time(session.last_activity_at)}")
    if session.cwd:
        console.print(f"Working Directory: {session.cwd}")
    console.print(
        f"Turns: {session.total_turns}  Tools: {session.total_tools_used}  "
        f"Interruptions: {session.total_interruptions}  Commits: {detail.commits}"
    )
    console.print(f"Total cost: [green]{_fmt_cost(detail.total_cost_usd)}[/green]")

    cost_by_turn = {c.turn_number: c for c in turn_costs}
    if detail.turns:
        table = Table(title="Turns")
        table.add_column("#", justify="right")
        table.add_column("Started", style="green")
        table.add_column("State")
        table.add_column("Intent", style="magenta")
        table.add_column("Tokens", justify="right")
        table.add_column("Cost", justify="right")
        for turn in detail.turns:
            cost = cost_by_turn.get(turn.turn_number)
            state_color = {"open": "yellow", "interrupted": "red"}.get(turn.state.value, "white")
            table.add_row(
                str(turn.turn_number),
                _fmt_time(turn.started_at),
                f"[{state_color}]{turn.state.value}[/{state_color}]",
                detail.intents.get(turn.turn_number, "-"),
                str(cost.total_tokens) if cost else "0",
                _fmt_cost(cost.total_cost_usd if cost else 0.0),
            )
        console.print(table)

    if detail.tool_counts:
        table = Table(title="Tool Usage")
        table.add_column("Tool", style="green")
        table.add_column("Count", justify="right")
        for tool_name, count in detail.tool_counts.items():
            table.add_row(tool_name, str(count))
        console.print(table)

    if pr_costs:
        table = Table(title="Cost per Pull Request")
        table.add_column("PR", style="cyan")
        table.add_column("Window")
        table.add_column("Cost", justify="right")
        table.add_column("Per Commit", justify="right")
        table.add_column("Per Line", justify="right")
        for pr_cost in pr_costs:
            table.add_row(
                f"{pr_cost.repository}#{pr_cost.pr_number}",
                f"{_fmt_time(pr_cost.window_start)} - {_fmt_time(pr_cost.window_end)}",
                _fmt_cost(pr_cost.total_cost_usd),
                _fmt_cost(pr_cost.cost_per_commit),
                _fmt_cost(pr_cost.cost_per_line),
            )
        console.print(table)


def create_prs_table(reports: list[PRReport]) -> Table:
    table = Table(title="Pull Requests")
    table.add_column("PR", style="cyan")
    table.add_column("Title")
    table.add_column("State")
    table.add_column("Source", style="magenta")
    table.add_column("Commits (AI/human)", justify="right")
    table.add_column("CI")
    table.add_column("Quality")
    table.add_column("Cost", justify="right")

    for report in reports:
        pr = report.pr
        quality = "-"
        if report.quality:
            q = report.quality
            parts = []
            if q.quality_gate_status:
                color = "green" if q.quality_gate_status == "PASSED" else "red"
                parts.append(f"[{color}]{q.quality_gate_status}[/{color}]")
            if q.bugs_total is not None:
                parts.append(f"{q.bugs_total} issues")
            if q.coverage_percent is not None:
                parts.append(f"{q.coverage_percent:.1f}% cov")
            if q.maintainability_rating is not None:
                parts.append(f"M:{RATING_LETTERS.get(q.maintainability_rating, '?')}")
            quality = " ".join(parts) or "-"

        table.add_row(
            f"{pr.repository}#{pr.number}",
            pr.title,
            "merged" if pr.is_merged else pr.state.lower(),
            pr.data_source.value,
            f"{report.assistant_commits}/{report.human_commits}",
            _ci_cell(pr.ci_status, pr.checks_passed, pr.checks_failed),
            quality,
            _fmt_cost(report.cost.total_cost_usd) if report.cost else "-",
        )

    return table


def create_tool_stats_table(stats: list[ToolStats]) -> Table:
    table = Table(title="Tool Statistics")
    table.add_column("Tool", style="green")
    table.add_column("Calls", justify="right")
    table.add_column("Success Rate", justify="right")
    table.add_column("Avg Duration", justify="right")
    table.add_column("Last Used")

    for stat in stats:
        table.add_row(
            stat.tool_name,
            str(stat.total_calls),
            f"{stat.success_rate * 100:.1f}%",
            f"{stat.avg_duration_ms:.0f}ms",
            _fmt_time(stat.last_used_at),
        )

    return table


def create_commits_table(commits: list[CommitRecord]) -> Table:
    table = Table(title="Commits")
    table.add_column("SHA", style="cyan")
    table.add_column("Repository")
    table.add_column("Branch")
    table.add_column("Subject")
    table.add_column("Author")
    table.add_column("Session", style="magenta")
    table.add_column("PR", justify="right")
    table.add_column("+/-", justify="right")
    table.add_column("Committed")

    for commit in commits:
        owner = "[dim]human[/dim]"
        if commit.session_id:
            owner = commit.session_id[:8]
            if commit.turn_number:
                owner += f" (turn {commit.turn_number})"
        table.add_row(
            commit.sha[:8],
            commit.repository,
            commit.branch or "-",
            commit.message.splitlines()[0] if commit.message else "",
            commit.author_name or "-",
            owner,
            f"#{commit.pr_number}" if commit.pr_number else "-",
            f"[green]+{commit.insertions}[/green]/[red]-{commit.deletions}[/red]",
            _fmt_time(commit.committed_at),
        )

    return table
