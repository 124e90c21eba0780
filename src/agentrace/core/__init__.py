"""Core tracking, mining and accounting shared by every command."""

from agentrace.core.database import EventDatabase
from agentrace.core.settings import settings

__all__ = [
    "EventDatabase",
    "settings",
]
