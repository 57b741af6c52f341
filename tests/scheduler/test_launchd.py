"""Tests for launchd job registration and pmset wake requests."""

import plistlib
from datetime import datetime
from pathlib import Path
from zoneinfo import ZoneInfo

import pytest

from wake_puppy.scheduler.errors import (
    PrivilegedCommandError,
    RegistrationError,
    ScheduleValidationError,
)
from wake_puppy.scheduler.launchd import (
    JobDescriptor,
    JobRegistrar,
    build_descriptor,
    calendar_interval,
)
from wake_puppy.scheduler.wake import WakeScheduler

NOW = datetime(2026, 3, 10, 8, 0, tzinfo=ZoneInfo("UTC"))


class TestCalendarInterval:
    """Tests for StartCalendarInterval contents."""

    def test_daily(self, make_entry):
        assert calendar_interval(make_entry("daily", "07:05"), NOW) == {"Hour": 7, "Minute": 5}

    def test_weekly(self, make_entry):
        entry = make_entry("weekly", "18:30", weekday="friday")
        assert calendar_interval(entry, NOW) == {"Weekday": 5, "Hour": 18, "Minute": 30}

    def test_once_pins_the_date(self, make_entry):
        entry = make_entry("once", "10:15", date="2026-03-12")
        assert calendar_interval(entry, NOW) == {
            "Year": 2026,
            "Month": 3,
            "Day": 12,
            "Hour": 10,
            "Minute": 15,
        }

    def test_once_in_the_past_fails(self, make_entry):
        entry = make_entry("once", "10:15", date="2026-03-01")
        with pytest.raises(ScheduleValidationError):
            calendar_interval(entry, NOW)


class TestDescriptor:
    """Tests for the job descriptor."""

    def test_build_descriptor(self, make_entry, settings):
        entry = make_entry()
        descriptor = build_descriptor(entry, "com.wakepuppy.x", NOW, settings)
        assert descriptor.program_arguments == [entry.binary_path, "--run", entry.id]
        assert descriptor.environment == {
            "PATH": entry.path_env,
            "HOME": entry.home_dir,
            "USER": entry.user,
            "LOGNAME": entry.user,
        }
        assert descriptor.stdout_path.endswith(f"daemon-{entry.id}.out.log")
        assert descriptor.stderr_path.endswith(f"daemon-{entry.id}.err.log")
        assert descriptor.run_at_load is False

    def test_plist_escapes_special_characters(self):
        descriptor = JobDescriptor(
            label="com.wakepuppy.a",
            program_arguments=["/bin/wake-puppy", "--run", "a"],
            calendar_interval={"Hour": 9, "Minute": 0},
            stdout_path="/tmp/out & <log>.log",
            stderr_path="/tmp/err.log",
            environment={"USER": 'o"neil'},
        )
        raw = descriptor.to_plist()
        assert b"&amp;" in raw and b"&lt;log&gt;" in raw
        parsed = plistlib.loads(raw)
        assert parsed["StandardOutPath"] == "/tmp/out & <log>.log"
        assert parsed["EnvironmentVariables"]["USER"] == 'o"neil'
        assert parsed["RunAtLoad"] is False
        assert parsed["StartCalendarInterval"] == {"Hour": 9, "Minute": 0}


class TestJobRegistrar:
    """Tests for installing and removing jobs."""

    def test_label_and_path(self, settings, channel):
        registrar = JobRegistrar(settings, channel)
        assert registrar.label("abc") == "com.wakepuppy.abc"
        assert registrar.job_path("abc") == Path(settings.job_dir) / "com.wakepuppy.abc.plist"

    def test_install_writes_and_loads_job(self, make_entry, settings, channel):
        entry = make_entry()
        registrar = JobRegistrar(settings, channel)

        dest = registrar.install(entry, NOW)

        job = plistlib.loads(dest.read_bytes())
        assert job["Label"] == f"com.wakepuppy.{entry.id}"
        assert job["ProgramArguments"] == [entry.binary_path, "--run", entry.id]
        assert channel.loaded == [str(dest)]
        install = channel.commands("install")[0]
        assert install[:3] == ["install", "-m", "644"]
        assert not Path(install[3]).exists()

    def test_installing_twice_leaves_one_job(self, make_entry, settings, channel):
        """Re-installing an id replaces the loaded job."""
        entry = make_entry()
        registrar = JobRegistrar(settings, channel)

        registrar.install(entry, NOW)
        registrar.install(entry, NOW)

        assert channel.loaded == [str(registrar.job_path(entry.id))]
        assert list(Path(settings.job_dir).iterdir()) == [registrar.job_path(entry.id)]

    def test_install_failure_raises_and_cleans_temp_file(self, make_entry, settings, channel_factory):
        channel = channel_factory(fail_on=["install"])
        registrar = JobRegistrar(settings, channel)
        with pytest.raises(RegistrationError, match="install launchd plist"):
            registrar.install(make_entry(), NOW)
        assert not Path(channel.calls[0][3]).exists()

    def test_bootstrap_failure_raises(self, make_entry, settings, channel_factory):
        channel = channel_factory(fail_on=["launchctl bootstrap"])
        registrar = JobRegistrar(settings, channel)
        with pytest.raises(RegistrationError, match="load launchd job"):
            registrar.install(make_entry(), NOW)

    def test_remove_unloads_and_deletes(self, make_entry, settings, channel):
        entry = make_entry()
        registrar = JobRegistrar(settings, channel)
        dest = registrar.install(entry, NOW)

        registrar.remove(entry)

        assert channel.loaded == []
        assert not dest.exists()

    def test_remove_is_best_effort(self, make_entry, settings, channel_factory):
        channel = channel_factory(fail_on=["rm", "launchctl"])
        JobRegistrar(settings, channel).remove(make_entry())
        assert len(channel.calls) == 2

    def test_remove_if_privileged(self, make_entry, settings, channel_factory):
        unprivileged = channel_factory(elevated=False)
        JobRegistrar(settings, unprivileged).remove_if_privileged(make_entry())
        assert unprivileged.calls == []

        privileged = channel_factory(elevated=True)
        JobRegistrar(settings, privileged).remove_if_privileged(make_entry())
        assert privileged.commands("rm -f")


class TestWakeScheduler:
    """Tests for pmset wake requests."""

    def test_schedule(self, make_entry, settings, channel):
        entry = make_entry()
        WakeScheduler(settings, channel).schedule(entry, "03/11/26 09:00:00")
        assert channel.calls == [
            [
                "pmset",
                "schedule",
                "wakeorpoweron",
                "03/11/26 09:00:00",
                f"com.wakepuppy.{entry.id}",
            ]
        ]

    def test_schedule_empty_time_is_noop(self, make_entry, settings, channel):
        WakeScheduler(settings, channel).schedule(make_entry(), "")
        assert channel.calls == []

    def test_cancel_uses_stored_wake_time(self, make_entry, settings, channel):
        entry = make_entry(wake_time="03/11/26 09:00:00")
        WakeScheduler(settings, channel).cancel(entry)
        assert channel.calls == [
            [
                "pmset",
                "schedule",
                "cancel",
                "wakeorpoweron",
                "03/11/26 09:00:00",
                f"com.wakepuppy.{entry.id}",
            ]
        ]

    def test_cancel_without_wake_time_is_noop(self, make_entry, settings, channel):
        WakeScheduler(settings, channel).cancel(make_entry())
        assert channel.calls == []

    def test_failures_propagate(self, make_entry, settings, channel_factory):
        channel = channel_factory(fail_on=["pmset"])
        with pytest.raises(PrivilegedCommandError):
            WakeScheduler(settings, channel).schedule(make_entry(), "03/11/26 09:00:00")
