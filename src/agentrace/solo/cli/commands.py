"""CLI commands for hook installation, scanning and reports."""

import shutil
from pathlib import Path

import click

from agentrace.core.database import EventDatabase
from agentrace.core.logging_config import configure_logging
from agentrace.core.models import ScanTrigger
from agentrace.core.scheduler import ReconciliationScanner, ReconciliationScheduler
from agentrace.core.settings import settings
from agentrace.core.timestamps import utcnow
from agentrace.display.console import console
from agentrace.display.formatters import (
    create_commits_table,
    create_prs_table,
    create_sessions_table,
    create_tool_stats_table,
    display_session_detail,
)
from agentrace.solo.services.hook_service import HookService
from agentrace.solo.services.session_service import SessionService


def _session_service() -> SessionService:
    return SessionService(EventDatabase(config=settings))


def complete_session_id(ctx: click.Context, param: click.Parameter, incomplete: str) -> list[str]:
    """Complete session IDs from the database."""
    try:
        return [s for s in _session_service().list_sessions() if s.startswith(incomplete)]
    except Exception:
        return []


def check_agentrace_in_path() -> bool:
    """Check if agentrace is available in PATH."""
    return shutil.which("agentrace") is not None


def warn_if_not_in_path() -> None:
    """Print a warning if hooks cannot find the agentrace executable."""
    if not check_agentrace_in_path() and not settings.python_executable:
        console.print("\n[yellow]Warning: 'agentrace' is not in your PATH.[/yellow]")
        console.print("[yellow]Set AGENTRACE_PYTHON_EXECUTABLE or install the package as a tool.[/yellow]")


@click.command()
@click.option(
    "--global/--local",
    "global_",
    default=False,
    help="Install hooks globally (~/.claude) or locally (./.claude)",
)
def install(global_: bool) -> None:
    """Install agentrace hooks into Claude Code settings."""
    success, message = HookService(config=settings).install_hooks(global_)

    if success:
        console.print(f"[green]{message}[/green]")
        console.print("[cyan]Prompts, tool calls and commits of every session will now be tracked[/cyan]")
        warn_if_not_in_path()
    else:
        console.print(f"[red]{message}[/red]")


@click.command()
@click.option(
    "--global/--local",
    "global_",
    default=False,
    help="Remove hooks globally (~/.claude) or locally (./.claude)",
)
def uninstall(global_: bool) -> None:
    """Remove agentrace hooks from Claude Code settings."""
    success, message = HookService(config=settings).uninstall_hooks(global_)

    if success:
        console.print(f"[green]{message}[/green]")
    else:
        console.print(f"[red]{message}[/red]")


@click.command()
def status() -> None:
    """Show where hooks are installed and where data is stored."""
    installation = HookService(config=settings).get_installation_status()
    for scope in ("global", "local"):
        mark = "[green]installed[/green]" if installation[scope] else "[dim]not installed[/dim]"
        console.print(f"{scope.capitalize()} hooks: {mark} ({installation[f'{scope}_path']})")
    console.print(f"Database: {settings.resolved_database_path}")
    migrations = _session_service().get_migration_status()
    console.print(f"Schema: {len(migrations['applied'])}/{migrations['total']} migrations applied")
    for pending in migrations["pending"]:
        console.print(f"[yellow]Pending migration {pending['version']}: {pending['description']}[/yellow]")
    console.print(f"Log: {settings.resolved_log_path}")
    if settings.disable_background_scan:
        console.print("[yellow]Background scans are disabled[/yellow]")


@click.command()
@click.option(
    "--repo",
    "repo",
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    default=None,
    help="Repository to scan (default: current directory)",
)
@click.option(
    "--trigger",
    type=click.Choice([t.value for t in ScanTrigger]),
    default=ScanTrigger.MANUAL.value,
    show_default=True,
    help="Why the scan runs",
)
@click.option("--force", is_flag=True, help="Ignore the scan cooldown")
@click.option("--session-id", default=None, help="Session whose branch PR should be synced first")
@click.option("--detached-run", is_flag=True, hidden=True, help="Run as a dispatched background scan")
def scan(repo: Path | None, trigger: str, force: bool, session_id: str | None, detached_run: bool) -> None:
    """Reconcile recent commits and pull requests with tracked sessions."""
    configure_logging(settings)
    cwd = (repo or Path.cwd()).resolve()
    scan_trigger = ScanTrigger(trigger)
    db = EventDatabase(config=settings)

    if not detached_run:
        scheduler = ReconciliationScheduler(config=settings)
        repo_id = scheduler.vcs.repo_identifier(cwd)
        if not repo_id:
            console.print(f"[red]{cwd} is not a git repository[/red]")
            return
        if not scheduler.should_scan(repo_id, scan_trigger, force=force):
            console.print(f"[yellow]{repo_id} was scanned recently; use --force to scan anyway[/yellow]")
            return
        scheduler.cache.record(repo_id, utcnow())

    report = ReconciliationScanner(db, config=settings).run(cwd, scan_trigger, session_id=session_id)
    if detached_run:
        return

    if report.skipped:
        console.print("[yellow]Scan skipped: another scan is running[/yellow]")
        return
    console.print(f"[bold]Scanned {report.repository}[/bold]")
    if report.branch_pr:
        console.print(f"Branch PR: #{report.branch_pr}")
    console.print(f"New commits: [green]{report.commits_added}[/green]")
    console.print(f"Pull requests ingested: [green]{report.prs_ingested}[/green]")
    for error in report.errors:
        console.print(f"[red]{error}[/red]")


@click.command()
@click.option("--limit", default=None, type=int, help="Number of recent sessions to show")
def sessions(limit: int | None) -> None:
    """List recent Claude Code sessions."""
    summaries = _session_service().get_sessions_summary(limit=limit or settings.recent_sessions_limit)

    if not summaries:
        console.print("[yellow]No sessions found[/yellow]")
        console.print("[dim]Run 'agentrace install' to start tracking Claude Code sessions[/dim]")
        return

    console.print(create_sessions_table(summaries))


@click.command()
@click.argument("session_id", shell_complete=complete_session_id)
def show(session_id: str) -> None:
    """Show turns, tools and cost for a session."""
    service = _session_service()
    detail = service.get_session_detail(session_id)

    if not detail:
        console.print(f"[red]No data found for session {session_id}[/red]")
        return

    display_session_detail(detail, service.get_turn_costs(session_id), service.get_pr_costs(session_id))


@click.command()
@click.option("--repo", "repository", default=None, help="Repository identifier, e.g. owner/name")
@click.option("--limit", default=50, show_default=True, type=int, help="Number of PRs to show")
def prs(repository: str | None, limit: int) -> None:
    """List tracked pull requests with attribution, CI, quality and cost."""
    reports = _session_service().get_pr_reports(repository=repository, limit=limit)

    if not reports:
        console.print("[yellow]No pull requests tracked yet[/yellow]")
        return

    console.print(create_prs_table(reports))


@click.command()
def tools() -> None:
    """Show per-tool call counts, success rate and duration."""
    stats = _session_service().get_tool_stats()

    if not stats:
        console.print("[yellow]No tool calls recorded[/yellow]")
        return

    console.print(create_tool_stats_table(stats))


@click.command()
@click.option("--repo", "repository", default=None, help="Repository identifier, e.g. owner/name")
@click.option("--limit", default=50, show_default=True, type=int, help="Number of commits to show")
def commits(repository: str | None, limit: int) -> None:
    """List tracked commits and the session that authored each one."""
    records = _session_service().list_commits(repository=repository, limit=limit)

    if not records:
        console.print("[yellow]No commits tracked yet[/yellow]")
        return

    console.print(create_commits_table(records))
