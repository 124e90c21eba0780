"""Tests for configuration settings and override priority."""

import os
from pathlib import Path
from unittest.mock import patch

from agentrace.core.settings import Settings


def _clean_env():
    return {k: v for k, v in os.environ.items() if not k.startswith("AGENTRACE_")}


class TestSettingsOverridePriority:
    def test_env_files__later_file_overrides_earlier(self, tmp_path):
        global_config = tmp_path / "global.env"
        global_config.write_text("AGENTRACE_SCAN_COOLDOWN_HOURS=2\nAGENTRACE_DEBUG_MODE=true\n")
        local_config = tmp_path / "local.env"
        local_config.write_text("AGENTRACE_SCAN_COOLDOWN_HOURS=1.5\n")

        with patch.dict(os.environ, _clean_env(), clear=True):
            config = Settings(_env_file=[global_config, local_config])

        assert config.scan_cooldown_hours == 1.5
        assert config.debug_mode is True
        assert config.store_max_retries == 3

    def test_environment_variables_override_env_files(self, tmp_path):
        env_file = tmp_path / "local.env"
        env_file.write_text("AGENTRACE_DISABLE_BACKGROUND_SCAN=false\n")

        env = _clean_env() | {"AGENTRACE_DISABLE_BACKGROUND_SCAN": "true"}
        with patch.dict(os.environ, env, clear=True):
            config = Settings(_env_file=env_file)

        assert config.disable_background_scan is True


class TestSettingsDefaults:
    def test_defaults__match_documented_values(self, tmp_path):
        with patch.dict(os.environ, _clean_env(), clear=True):
            config = Settings(_env_file=None)

        assert config.scan_cooldown_hours == 6.0
        assert config.store_max_retries == 3
        assert config.store_retry_base_delay == 1.0
        assert config.store_retry_step == 0.5
        assert config.disable_background_scan is False

    def test_resolved_paths__derive_from_data_dir(self, tmp_path):
        config = Settings(_env_file=None, data_dir=str(tmp_path))

        assert config.resolved_database_path == tmp_path.resolve() / "agentrace.db"
        assert config.resolved_log_path == tmp_path.resolve() / "agentrace.log"
        assert config.cooldown_cache_path == tmp_path.resolve() / "scan_cooldown.json"

    def test_database_path__overrides_data_dir(self, tmp_path):
        config = Settings(_env_file=None, data_dir=tmp_path, database_path=str(tmp_path / "other" / "x.db"))

        assert config.resolved_database_path == (tmp_path / "other" / "x.db").resolve()

    def test_validate_paths__empty_string_is_none(self):
        config = Settings(_env_file=None, database_path="")

        assert config.database_path is None

    def test_hook_command__uses_python_executable_when_set(self):
        assert Settings(_env_file=None).hook_command == "agentrace hook-handler"
        assert (
            Settings(_env_file=None, python_executable="/usr/bin/python3").hook_command
            == "/usr/bin/python3 -m agentrace.cli hook-handler"
        )

    def test_user_id__defaults_to_login_name(self):
        with patch("agentrace.core.settings.getpass.getuser", return_value="alice"):
            config = Settings(_env_file=None)

        assert config.user_id == "alice"

    def test_data_dir__expands_user(self):
        config = Settings(_env_file=None, data_dir="~/agentrace-data")

        assert config.data_dir == Path("~/agentrace-data").expanduser()
