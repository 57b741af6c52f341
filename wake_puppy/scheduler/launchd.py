"""launchd job registration.

Each schedule owns one system-domain LaunchDaemon whose calendar interval
fires ``<binary> --run <id>``. The job file lives in the settings' job
directory as ``<prefix>.<id>.plist`` and is installed, loaded and unloaded
through the privilege channel.
"""

import logging
import os
import plistlib
import tempfile
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional

from wake_puppy.scheduler.context import PrivilegeChannel
from wake_puppy.scheduler.errors import (
    PrivilegedCommandError,
    RegistrationError,
    ScheduleValidationError,
)
from wake_puppy.scheduler.store import Store
from wake_puppy.scheduler.timeutil import next_run, parse_clock, weekday_number
from wake_puppy.scheduler.types import ScheduleEntry, ScheduleType
from wake_puppy.settings import SchedulerSettings, get_settings

logger = logging.getLogger(__name__)


def calendar_interval(entry: ScheduleEntry, now: Optional[datetime] = None) -> Dict[str, int]:
    """launchd ``StartCalendarInterval`` for a schedule.

    One-time schedules pin the full date of their next fire time; recurring
    ones only constrain the fields that repeat.
    """
    spec = entry.schedule
    if spec.type == ScheduleType.ONCE:
        when = next_run(entry, now or datetime.now().astimezone())
        return {
            "Year": when.year,
            "Month": when.month,
            "Day": when.day,
            "Hour": when.hour,
            "Minute": when.minute,
        }
    if spec.type == ScheduleType.DAILY:
        hour, minute = parse_clock(spec.time)
        return {"Hour": hour, "Minute": minute}
    if spec.type == ScheduleType.WEEKLY:
        hour, minute = parse_clock(spec.time)
        return {
            "Weekday": weekday_number(spec.weekday or ""),
            "Hour": hour,
            "Minute": minute,
        }
    raise ScheduleValidationError(f"unknown schedule type: {spec.type}")


@dataclass
class JobDescriptor:
    """Everything launchd needs to fire one schedule."""

    label: str
    program_arguments: List[str]
    calendar_interval: Dict[str, int]
    stdout_path: str
    stderr_path: str
    environment: Dict[str, str] = field(default_factory=dict)
    run_at_load: bool = False

    def to_plist(self) -> bytes:
        return plistlib.dumps(
            {
                "Label": self.label,
                "ProgramArguments": list(self.program_arguments),
                "StartCalendarInterval": dict(self.calendar_interval),
                "StandardOutPath": self.stdout_path,
                "StandardErrorPath": self.stderr_path,
                "EnvironmentVariables": dict(self.environment),
                "RunAtLoad": self.run_at_load,
            },
            fmt=plistlib.FMT_XML,
        )


def build_descriptor(
    entry: ScheduleEntry,
    label: str,
    now: Optional[datetime] = None,
    settings: Optional[SchedulerSettings] = None,
) -> JobDescriptor:
    settings = settings or get_settings()
    stdout_path, stderr_path = Store.for_home(entry.home_dir, settings).daemon_log_paths(
        entry.id
    )
    return JobDescriptor(
        label=label,
        program_arguments=[entry.binary_path, "--run", entry.id],
        calendar_interval=calendar_interval(entry, now),
        stdout_path=str(stdout_path),
        stderr_path=str(stderr_path),
        environment={
            "PATH": entry.path_env,
            "HOME": entry.home_dir,
            "USER": entry.user,
            "LOGNAME": entry.user,
        },
    )


class JobRegistrar:
    """Installs and removes the launchd job of each schedule."""

    def __init__(
        self,
        settings: Optional[SchedulerSettings] = None,
        channel: Optional[PrivilegeChannel] = None,
    ):
        self.settings = settings or get_settings()
        self.channel = channel or PrivilegeChannel()

    def label(self, schedule_id: str) -> str:
        return f"{self.settings.job_label_prefix}.{schedule_id}"

    def job_path(self, schedule_id: str) -> Path:
        return Path(self.settings.job_dir) / f"{self.label(schedule_id)}.plist"

    def install(self, entry: ScheduleEntry, now: Optional[datetime] = None) -> Path:
        """Write, install and (re)load the job for ``entry``.

        An already-loaded job with the same id is unloaded first, so
        re-installing replaces it.

        Raises:
            RegistrationError: if the job file can't be installed or loaded.
        """
        descriptor = build_descriptor(entry, self.label(entry.id), now, self.settings)
        dest = self.job_path(entry.id)
        domain = self.settings.launchd_domain

        fd, tmp = tempfile.mkstemp(prefix=f"wake-puppy-{entry.id}-", suffix=".plist")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(descriptor.to_plist())

            try:
                self.channel.run("install", "-m", "644", tmp, str(dest))
            except PrivilegedCommandError as exc:
                raise RegistrationError(f"install launchd plist: {exc}") from exc

            self._bootout(dest)
            try:
                self.channel.run("launchctl", "bootstrap", domain, str(dest))
            except PrivilegedCommandError as exc:
                raise RegistrationError(f"load launchd job: {exc}") from exc
        finally:
            try:
                os.remove(tmp)
            except OSError:
                pass

        logger.info("Installed launchd job %s", descriptor.label)
        return dest

    def remove(self, entry: ScheduleEntry) -> None:
        """Unload and delete the job. Failures are logged, never raised."""
        dest = self.job_path(entry.id)
        self._bootout(dest)
        try:
            self.channel.run("rm", "-f", str(dest))
        except PrivilegedCommandError as exc:
            logger.warning("Could not remove %s: %s", dest, exc)

    def remove_if_privileged(self, entry: ScheduleEntry) -> None:
        """``remove`` when we already hold root; a no-op otherwise."""
        if not self.channel.elevated:
            return
        self.remove(entry)

    def _bootout(self, dest: Path) -> None:
        try:
            self.channel.run(
                "launchctl", "bootout", self.settings.launchd_domain, str(dest), quiet=True
            )
        except PrivilegedCommandError as exc:
            logger.debug("bootout %s: %s", dest, exc)
