"""Main CLI dispatcher for agentrace."""

import sys

import click


@click.group()
def cli() -> None:
    """agentrace - attribute commits, PRs, CI results and cost to Claude Code sessions."""
    pass


@cli.command("hook-handler", hidden=True)
def hook_handler() -> None:
    """Internal command for processing hook events."""
    from agentrace.core.hook_handler import handle_hook

    sys.exit(handle_hook())


@cli.command("hook-prompt-submit", hidden=True)
def hook_prompt_submit() -> None:
    """Internal command for processing UserPromptSubmit hook events."""
    from agentrace.core.hook_handler import handle_hook
    from agentrace.core.models import HookEventType

    sys.exit(handle_hook(event_type_override=HookEventType.USER_PROMPT_SUBMIT))


@cli.command("hook-pre-tool-use", hidden=True)
def hook_pre_tool_use() -> None:
    """Internal command for processing PreToolUse hook events."""
    from agentrace.core.hook_handler import handle_hook
    from agentrace.core.models import HookEventType

    sys.exit(handle_hook(event_type_override=HookEventType.PRE_TOOL_USE))


@cli.command("hook-post-tool-use", hidden=True)
def hook_post_tool_use() -> None:
    """Internal command for processing PostToolUse hook events."""
    from agentrace.core.hook_handler import handle_hook
    from agentrace.core.models import HookEventType

    sys.exit(handle_hook(event_type_override=HookEventType.POST_TOOL_USE))


@cli.command("hook-stop", hidden=True)
def hook_stop() -> None:
    """Internal command for processing Stop hook events."""
    from agentrace.core.hook_handler import handle_hook
    from agentrace.core.models import HookEventType

    sys.exit(handle_hook(event_type_override=HookEventType.STOP))


from agentrace.solo.cli.commands import commits, install, prs, scan, sessions, show, status, tools, uninstall

cli.add_command(install)
cli.add_command(uninstall)
cli.add_command(status)
cli.add_command(scan)
cli.add_command(sessions)
cli.add_command(show)
cli.add_command(prs)
cli.add_command(commits)
cli.add_command(tools)


if __name__ == "__main__":
    cli()
