"""Single-user commands: hook installation, scans and reports."""

from agentrace.solo.services.hook_service import HookService
from agentrace.solo.services.session_service import SessionService

__all__ = [
    "SessionService",
    "HookService",
]
