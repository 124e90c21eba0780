"""Shared Rich console for command output."""

from rich.console import Console

console = Console()
