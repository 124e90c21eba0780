"""Configuration settings for agentrace."""

import getpass
import os
import sys
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def get_default_data_dir() -> Path:
    """Get platform-specific default data directory."""
    app_name = "agentrace"

    if sys.platform == "win32":
        base = os.environ.get("LOCALAPPDATA")
        if not base:
            base = Path.home() / "AppData" / "Local"
        return Path(base) / app_name
    elif sys.platform == "darwin":
        return Path.home() / "Library" / "Application Support" / app_name
    else:
        xdg_data_home = os.environ.get("XDG_DATA_HOME")
        if xdg_data_home:
            return Path(xdg_data_home) / app_name
        return Path.home() / ".local" / "share" / app_name


def get_default_config_dir() -> Path:
    """Get platform-specific default config directory."""
    app_name = "agentrace"

    if sys.platform in ("win32", "darwin"):
        return get_default_data_dir()
    xdg_config_home = os.environ.get("XDG_CONFIG_HOME")
    if xdg_config_home:
        return Path(xdg_config_home) / app_name
    return Path.home() / ".config" / app_name


def _default_user_id() -> str:
    try:
        return getpass.getuser()
    except (KeyError, OSError):
        return "unknown"


class Settings(BaseSettings):
    """Application settings with support for .env files."""

    model_config = SettingsConfigDict(
        env_file=[
            get_default_config_dir() / ".env",
            ".env",
        ],
        env_file_encoding="utf-8",
        case_sensitive=False,
        env_prefix="AGENTRACE_",
        extra="ignore",
    )

    def __init__(self, **kwargs):
        """Initialize settings and ensure global config directory exists."""
        self._ensure_global_config_dir()
        super().__init__(**kwargs)

    @staticmethod
    def _ensure_global_config_dir() -> None:
        """Ensure the global config directory exists."""
        try:
            get_default_config_dir().mkdir(parents=True, exist_ok=True)
        except OSError:
            pass

    database_path: Path | None = None
    log_path: Path | None = None
    data_dir: Path | None = None

    python_executable: str | None = None
    backup_existing_settings: bool = True
    recent_sessions_limit: int = 10

    debug_mode: bool = False
    user_id: str = Field(default_factory=_default_user_id)

    disable_background_scan: bool = Field(
        default=False, description="Turn off detached reconciliation scans entirely"
    )
    scan_cooldown_hours: float = Field(default=6.0, description="Minimum interval between non-forced scans")
    scan_since_days: int = Field(default=14, description="How far back a reconciliation scan looks")
    scan_commit_limit: int = Field(default=100, description="Maximum commits pulled per scan")
    scan_pr_limit: int = Field(default=30, description="Maximum pull requests pulled per scan")
    scan_lock_wait: float = Field(
        default=120.0, description="Seconds a push or PR-create scan waits for a running scan of the same repository"
    )

    git_timeout: float = Field(default=10.0, description="Timeout in seconds for git invocations")
    host_timeout: float = Field(default=30.0, description="Timeout in seconds for gh invocations")

    store_max_retries: int = Field(default=3, description="Retries after the first attempt on a locked store")
    store_retry_base_delay: float = Field(default=1.0, description="Base backoff in seconds on a locked store")
    store_retry_step: float = Field(default=0.5, description="Extra backoff in seconds added per attempt")
    store_busy_timeout_ms: int = Field(default=5000, description="SQLite busy_timeout pragma")

    default_model: str = Field(default="claude-sonnet-4-5", description="Pricing used for unrecognized models")

    @field_validator("database_path", "log_path", "data_dir", mode="before")
    @classmethod
    def validate_paths(cls, v: str | Path | None) -> Path | None:
        """Convert string paths to Path objects."""
        if v is None or v == "":
            return None
        if isinstance(v, str):
            return Path(v).expanduser()
        return v

    @property
    def resolved_data_dir(self) -> Path:
        """Directory holding the database, log, lock and cooldown cache."""
        if self.data_dir is not None:
            return self.data_dir.resolve()
        return get_default_data_dir()

    @property
    def resolved_database_path(self) -> Path:
        """Get the resolved database path, using default if not set."""
        if self.database_path is not None:
            return self.database_path.resolve()
        return self.resolved_data_dir / "agentrace.db"

    @property
    def resolved_log_path(self) -> Path:
        """Append-only log file for hook and scan activity."""
        if self.log_path is not None:
            return self.log_path.resolve()
        return self.resolved_data_dir / "agentrace.log"

    @property
    def cooldown_cache_path(self) -> Path:
        return self.resolved_data_dir / "scan_cooldown.json"

    @property
    def hook_command(self) -> str:
        """Get the hook command to execute."""
        if self.python_executable:
            return f"{self.python_executable} -m agentrace.cli hook-handler"

        return "agentrace hook-handler"


settings = Settings()
