"""
Typed settings management using pydantic-settings.

All knobs of the schedule engine live here: where the store lives, where
launchd job descriptors are installed, which program a schedule runs, and
how much run history is retained.

Every field can be overridden from the environment with the ``WAKE_PUPPY_``
prefix (e.g. ``WAKE_PUPPY_RUN_LOG_MAX=20``).

Usage:
    from wake_puppy.settings import get_settings

    settings = get_settings()
    print(settings.job_dir)
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

APP_NAME = "WakePuppy"


class SchedulerSettings(BaseSettings):
    """Configuration for storing, registering and running schedules."""

    model_config = SettingsConfigDict(
        env_prefix="WAKE_PUPPY_",
        extra="ignore",
        case_sensitive=False,
    )

    # Storage
    data_dir: Optional[Path] = Field(
        default=None,
        description="Store root. Defaults to ~/Library/Application Support/WakePuppy of the account.",
    )

    # launchd / pmset
    job_dir: Path = Field(
        default=Path("/Library/LaunchDaemons"),
        description="Directory launchd reads job descriptors from",
    )
    job_label_prefix: str = Field(default="com.wakepuppy")
    launchd_domain: str = Field(default="system")

    # Target program
    target_program: str = Field(
        default="claude", description="Executable looked up on the schedule's PATH"
    )
    install_command: str = Field(
        default="curl -fsSL https://claude.ai/install.sh | bash"
    )
    default_model: str = Field(default="auto")
    default_permission_mode: str = Field(default="acceptEdits")

    # Credentials
    credential_service: str = Field(
        default=APP_NAME, description="Secret store service name for the setup token"
    )
    setup_token_command: str = Field(default="claude setup-token")

    # Runtime
    keep_awake_command: str = Field(
        default="caffeinate",
        description="Helper that keeps the machine awake while a run is in progress",
    )
    binary_path: Optional[str] = Field(
        default=None,
        description="Executable the OS timer invokes. Resolved from PATH when unset.",
    )
    default_path_env: str = Field(
        default="/usr/local/bin:/usr/bin:/bin:/usr/sbin:/sbin"
    )
    session_match_window_seconds: int = Field(default=30, ge=0)
    prompt_preview_chars: int = Field(default=120, ge=4)

    # Retention
    run_log_max: int = Field(default=50, description="Run log entries to keep")
    daemon_log_max: int = Field(default=50, description="Daemon stdout/stderr files to keep")

    def support_dir(self, home: Optional[str | Path] = None) -> Path:
        """Return the store root for the account whose home is ``home``."""
        if self.data_dir is not None:
            return Path(self.data_dir).expanduser()
        base = Path(home) if home else Path.home()
        return base / "Library" / "Application Support" / APP_NAME


@lru_cache(maxsize=1)
def get_settings() -> SchedulerSettings:
    """Get the cached settings singleton.

    The settings are loaded once and cached for the process lifetime.
    To reload, call clear_settings_cache() first.
    """
    return SchedulerSettings()


def clear_settings_cache() -> None:
    """Clear the cached settings instance.

    Call this if environment variables have changed and you need to
    reload configuration.
    """
    get_settings.cache_clear()
