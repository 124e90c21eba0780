"""Hook management service for Claude Code integration."""

import json
from datetime import datetime
from pathlib import Path

from agentrace.core.settings import Settings, settings

HOOK_COMMAND_MARKERS = ("agentrace hook-", "agentrace.cli hook-")


def _is_agentrace_hook(hook_config: dict) -> bool:
    hooks = hook_config.get("hooks")
    return isinstance(hooks, list) and any(
        marker in hook.get("command", "")
        for hook in hooks
        if isinstance(hook, dict)
        for marker in HOOK_COMMAND_MARKERS
    )


class HookService:
    """Handles Claude Code hook installation and management."""

    # Commands to whitelist so agents can look up their own sessions
    WHITELISTED_COMMANDS = [
        "Bash(agentrace sessions:*)",
        "Bash(agentrace show:*)",
        "Bash(agentrace prs:*)",
    ]

    def __init__(self, config: Settings | None = None, home: Path | None = None, cwd: Path | None = None):
        self.config = config or settings
        self.home = home or Path.home()
        self.cwd = cwd or Path.cwd()

    def settings_file(self, global_: bool) -> Path:
        settings_dir = self.home / ".claude" if global_ else self.cwd / ".claude"
        return settings_dir / "settings.json"

    def create_hook_configuration(self) -> dict:
        """Create agentrace hook configuration for Claude Code."""
        base_command = self.config.hook_command.replace("hook-handler", "hook-{}")

        return {
            "UserPromptSubmit": [{"hooks": [{"type": "command", "command": base_command.format("prompt-submit")}]}],
            "PreToolUse": [
                {"matcher": ".*", "hooks": [{"type": "command", "command": base_command.format("pre-tool-use")}]}
            ],
            "PostToolUse": [
                {"matcher": ".*", "hooks": [{"type": "command", "command": base_command.format("post-tool-use")}]}
            ],
            "Stop": [{"hooks": [{"type": "command", "command": base_command.format("stop")}]}],
        }

    def install_hooks(self, global_: bool = False) -> tuple[bool, str]:
        """Install agentrace hooks into Claude Code settings.

        Returns:
            Tuple of (success, message)
        """
        settings_file = self.settings_file(global_)
        settings_dir = settings_file.parent
        settings_dir.mkdir(parents=True, exist_ok=True)

        existing_settings = {}
        if settings_file.exists():
            try:
                with open(settings_file) as f:
                    existing_settings = json.load(f)
            except json.JSONDecodeError:
                return False, f"Invalid JSON in {settings_file}"

        if "hooks" in existing_settings and self.config.backup_existing_settings:
            backup_file = settings_dir / f"settings.backup.{datetime.now().strftime('%Y%m%d_%H%M%S')}.json"
            with open(backup_file, "w") as f:
                json.dump(existing_settings, f, indent=2)

        hooks = existing_settings.setdefault("hooks", {})
        for hook_type, hook_configs in self.create_hook_configuration().items():
            kept = [h for h in hooks.get(hook_type, []) if not _is_agentrace_hook(h)]
            hooks[hook_type] = kept + hook_configs

        allow = existing_settings.setdefault("permissions", {}).setdefault("allow", [])
        for cmd in self.WHITELISTED_COMMANDS:
            if cmd not in allow:
                allow.append(cmd)

        try:
            with open(settings_file, "w") as f:
                json.dump(existing_settings, f, indent=2)
        except OSError as e:
            return False, f"Failed to write settings: {e}"

        scope = "globally" if global_ else "locally"
        return True, f"agentrace hooks installed {scope} in {settings_file}"

    def uninstall_hooks(self, global_: bool = False) -> tuple[bool, str]:
        """Remove agentrace hooks from Claude Code settings.

        Returns:
            Tuple of (success, message)
        """
        settings_file = self.settings_file(global_)
        scope = "globally" if global_ else "locally"

        if not settings_file.exists():
            return True, f"No settings file found {scope}"

        try:
            with open(settings_file) as f:
                settings_data = json.load(f)
        except json.JSONDecodeError:
            return False, f"Invalid JSON in {settings_file}"

        removed_any = False
        hooks = settings_data.get("hooks", {})
        for hook_type in list(hooks):
            kept = [h for h in hooks[hook_type] if not _is_agentrace_hook(h)]
            if len(kept) < len(hooks[hook_type]):
                removed_any = True
            if kept:
                hooks[hook_type] = kept
            else:
                del hooks[hook_type]
        if "hooks" in settings_data and not hooks:
            del settings_data["hooks"]

        permissions = settings_data.get("permissions", {})
        if "allow" in permissions:
            permissions["allow"] = [cmd for cmd in permissions["allow"] if cmd not in self.WHITELISTED_COMMANDS]
            if not permissions["allow"]:
                del permissions["allow"]
            if not permissions:
                del settings_data["permissions"]

        try:
            with open(settings_file, "w") as f:
                json.dump(settings_data, f, indent=2)
        except OSError as e:
            return False, f"Failed to write settings: {e}"

        if removed_any:
            return True, f"agentrace hooks removed {scope} from {settings_file}"
        return True, f"No agentrace hooks found to remove {scope}"

    def check_hooks_installed(self, settings_file: Path) -> bool:
        """Check if agentrace hooks are installed in a settings file."""
        if not settings_file.exists():
            return False
        try:
            with open(settings_file) as f:
                settings_data = json.load(f)
        except json.JSONDecodeError:
            return False
        return any(
            _is_agentrace_hook(hook_config)
            for hook_configs in settings_data.get("hooks", {}).values()
            for hook_config in hook_configs
        )

    def get_installation_status(self) -> dict[str, bool | str]:
        """Get installation status for global and local hooks."""
        global_settings = self.settings_file(True)
        local_settings = self.settings_file(False)

        return {
            "global": self.check_hooks_installed(global_settings),
            "local": self.check_hooks_installed(local_settings),
            "global_path": str(global_settings),
            "local_path": str(local_settings),
        }
