"""Pytest configuration and fixtures for wake-puppy tests.

No test may touch launchd, pmset, sudo or the keychain. Settings point the
store and the job directory at temporary directories, and privileged
commands go through ``FakeChannel`` which records (and partly simulates)
what would have been run.
"""

import os
import shutil
from datetime import datetime
from pathlib import Path
from typing import Iterable, List

import logfire
import pytest

from wake_puppy.scheduler.context import PrivilegeChannel
from wake_puppy.scheduler.errors import PrivilegedCommandError
from wake_puppy.scheduler.store import Store
from wake_puppy.scheduler.types import Account, ScheduleEntry, ScheduleSpec
from wake_puppy.settings import clear_settings_cache, get_settings


def pytest_configure(config):
    # Keep structured events local during tests.
    logfire.configure(send_to_logfire=False, console=False)


@pytest.fixture(autouse=True)
def isolate_settings(tmp_path_factory, monkeypatch):
    """Point every setting that touches the machine at a temp directory."""
    root = tmp_path_factory.mktemp("wake_puppy_env")
    monkeypatch.setenv("WAKE_PUPPY_DATA_DIR", str(root / "data"))
    monkeypatch.setenv("WAKE_PUPPY_JOB_DIR", str(root / "LaunchDaemons"))
    monkeypatch.setenv("WAKE_PUPPY_KEEP_AWAKE_COMMAND", "wake-puppy-test-no-keep-awake")
    (root / "LaunchDaemons").mkdir()
    clear_settings_cache()
    yield
    clear_settings_cache()


class FakeChannel(PrivilegeChannel):
    """Privilege channel that records commands instead of running them.

    ``install`` copies the file and ``launchctl bootstrap/bootout`` track a
    set of loaded job paths, so registrations can be inspected. Any command
    whose joined argv starts with one of ``fail_on`` raises.
    """

    def __init__(self, elevated: bool = True, fail_on: Iterable[str] = ()):
        super().__init__(elevated=elevated)
        self.fail_on = list(fail_on)
        self.calls: List[List[str]] = []
        self.loaded: List[str] = []
        self.ensured = 0

    def ensure(self) -> None:
        self.ensured += 1

    def run(self, *argv: str, quiet: bool = False) -> None:
        self.calls.append(list(argv))
        joined = " ".join(argv)
        if any(joined.startswith(prefix) for prefix in self.fail_on):
            raise PrivilegedCommandError(argv, 1)

        if argv[0] == "install":
            shutil.copyfile(argv[-2], argv[-1])
        elif argv[:2] == ("launchctl", "bootstrap"):
            if argv[-1] in self.loaded:
                raise PrivilegedCommandError(argv, 5, "service already loaded")
            self.loaded.append(argv[-1])
        elif argv[:2] == ("launchctl", "bootout"):
            if argv[-1] not in self.loaded:
                raise PrivilegedCommandError(argv, 3)
            self.loaded.remove(argv[-1])
        elif argv[:2] == ("rm", "-f"):
            Path(argv[-1]).unlink(missing_ok=True)

    def commands(self, prefix: str) -> List[List[str]]:
        return [c for c in self.calls if " ".join(c).startswith(prefix)]


@pytest.fixture
def channel():
    return FakeChannel()


@pytest.fixture
def channel_factory():
    """Build a FakeChannel with other privileges or failing commands."""
    return FakeChannel


@pytest.fixture
def settings():
    return get_settings()


@pytest.fixture
def store(settings):
    s = Store(settings.support_dir())
    s.ensure()
    return s


@pytest.fixture
def account(tmp_path):
    home = tmp_path / "home"
    home.mkdir()
    return Account(
        user=os.environ.get("USER") or "tester",
        uid=os.getuid(),
        gid=os.getgid(),
        home_dir=str(home),
        path_env=os.environ.get("PATH", "/usr/bin:/bin"),
    )


@pytest.fixture
def make_entry(account):
    """Factory for schedule entries owned by ``account``."""

    def _make(schedule_type="daily", time="09:00", **overrides) -> ScheduleEntry:
        spec_fields = {"type": schedule_type, "time": time}
        for key in ("date", "weekday"):
            if key in overrides:
                spec_fields[key] = overrides.pop(key)
        fields = dict(
            project_path=account.home_dir,
            prompt="Summarize yesterday's commits",
            model="auto",
            permission_mode="acceptEdits",
            new_session=True,
            schedule=ScheduleSpec(**spec_fields),
            timezone="UTC",
            created_at=datetime(2026, 1, 1, 8, 0).astimezone(),
            updated_at=datetime(2026, 1, 1, 8, 0).astimezone(),
            binary_path="/usr/local/bin/wake-puppy",
            user=account.user,
            uid=account.uid,
            gid=account.gid,
            home_dir=account.home_dir,
            path_env=account.path_env,
        )
        fields.update(overrides)
        return ScheduleEntry(**fields)

    return _make
