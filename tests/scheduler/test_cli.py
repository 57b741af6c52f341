"""Tests for scheduler CLI command handlers."""

import io
import json
from datetime import datetime, timedelta
from pathlib import Path
from unittest.mock import patch
from zoneinfo import ZoneInfo

import pytest
from rich.table import Table

from wake_puppy.paths import project_dir_name
from wake_puppy.scheduler import cli
from wake_puppy.scheduler.errors import ScheduleNotFoundError, SetupError
from wake_puppy.scheduler.manager import ScheduleDraft, ScheduleManager
from wake_puppy.scheduler.types import LogEntry, RunStatus

NOW = datetime(2026, 3, 10, 8, 0, tzinfo=ZoneInfo("UTC"))
SESSION_ID = "0b9a7d4e-3c1f-4e8a-9d2b-6f5e4c3b2a10"


@pytest.fixture
def manager(store, settings, channel, account):
    return ScheduleManager(
        store,
        settings=settings,
        channel=channel,
        account=account,
        binary_path="/usr/local/bin/wake-puppy",
        clock=lambda: NOW,
    )


@pytest.fixture
def home(account, monkeypatch):
    monkeypatch.setenv("HOME", account.home_dir)
    return Path(account.home_dir)


def write_session(home: Path, project: str, session_id: str = SESSION_ID) -> Path:
    folder = home / ".claude" / "projects" / project_dir_name(project)
    folder.mkdir(parents=True, exist_ok=True)
    path = folder / f"{session_id}.jsonl"
    path.write_text(json.dumps({"type": "summary", "summary": "Earlier work"}) + "\n")
    return path


def table_column(table: Table, index: int):
    return list(table.columns[index]._cells)


class TestList:
    """Tests for listing schedules."""

    @patch("wake_puppy.scheduler.cli.emit_info")
    def test_empty(self, mock_info, store):
        assert cli.handle_list(store) is True
        mock_info.assert_any_call("No schedules configured.")

    @patch("wake_puppy.scheduler.cli.emit_info")
    def test_sorted_soonest_first(self, mock_info, store, make_entry):
        later = make_entry(next_run=NOW + timedelta(days=2))
        sooner = make_entry(next_run=NOW + timedelta(hours=1))
        unscheduled = make_entry()
        for entry in (unscheduled, later, sooner):
            store.add(entry)

        assert cli.handle_list(store) is True

        table = mock_info.call_args[0][0]
        assert isinstance(table, Table)
        assert table.title == "Schedules (3)"
        assert table_column(table, 0) == [sooner.id, later.id, unscheduled.id]

    @patch("wake_puppy.scheduler.cli.emit_error")
    def test_unreadable_store(self, mock_error, store):
        store.schedules_file.write_text("{not json")
        assert cli.handle_list(store) is False
        assert "parse schedules" in mock_error.call_args[0][0]


class TestLogs:
    """Tests for the run history view."""

    @patch("wake_puppy.scheduler.cli.emit_info")
    def test_empty(self, mock_info, store):
        assert cli.handle_logs(store=store) is True
        mock_info.assert_called_once_with("No runs recorded yet.")

    @patch("wake_puppy.scheduler.cli.emit_info")
    def test_limit_and_detail(self, mock_info, store):
        for day, status, error in (
            (1, RunStatus.SUCCESS, None),
            (2, RunStatus.ERROR, "exit status 2"),
            (3, RunStatus.SUCCESS, None),
        ):
            store.append_log(
                LogEntry(
                    schedule_id="s1",
                    ran_at=datetime(2026, 3, day, 8, 0, tzinfo=ZoneInfo("UTC")),
                    status=status,
                    exit_code=0 if error is None else 2,
                    error=error,
                    prompt_preview=f"run {day}",
                )
            )

        assert cli.handle_logs(2, store) is True

        table = mock_info.call_args[0][0]
        assert table.row_count == 2
        assert table_column(table, 3) == ["0", "2"]
        assert table_column(table, 4) == ["run 3", "exit status 2"]


class TestRun:
    """Tests for the launchd entry point."""

    @patch("wake_puppy.scheduler.cli.emit_error")
    def test_unknown_schedule(self, mock_error, store):
        assert cli.handle_run("missing", store) is False
        mock_error.assert_called_once_with("schedule not found: missing")

    @patch("wake_puppy.scheduler.cli.emit_warning")
    @patch("wake_puppy.scheduler.cli.run_schedule")
    def test_program_failure_is_not_a_cli_failure(self, mock_run, mock_warning, store):
        mock_run.return_value = LogEntry(schedule_id="s1", status=RunStatus.ERROR, error="exit status 2")
        assert cli.handle_run("s1", store) is True
        assert "exit status 2" in mock_warning.call_args[0][0]

    @patch("wake_puppy.scheduler.cli.emit_success")
    @patch("wake_puppy.scheduler.cli.run_schedule")
    def test_success(self, mock_run, mock_success, store):
        mock_run.return_value = LogEntry(schedule_id="s1", status=RunStatus.SUCCESS)
        assert cli.handle_run("s1", store) is True
        mock_success.assert_called_once_with("Run of s1 completed")

    @patch("wake_puppy.scheduler.cli.emit_error")
    @patch("wake_puppy.scheduler.cli.run_schedule")
    def test_setup_failure(self, mock_run, mock_error, store):
        mock_run.side_effect = SetupError("claude not found in PATH")
        assert cli.handle_run("s1", store) is False
        mock_error.assert_called_once_with("claude not found in PATH")


class TestAddEditDelete:
    """Tests for the schedule-changing commands."""

    @patch("wake_puppy.scheduler.cli.emit_info")
    @patch("wake_puppy.scheduler.cli.emit_success")
    def test_add(self, mock_success, mock_info, manager, store):
        draft = ScheduleDraft(prompt="Check CI", schedule_type="daily", time="09:00", timezone="UTC")
        assert cli.handle_add(draft, manager) is True
        entry = store.load()[0]
        assert entry.prompt == "Check CI"
        mock_success.assert_called_once_with("Scheduled.")
        mock_info.assert_any_call(f"ID: {entry.id}")

    @patch("wake_puppy.scheduler.cli.emit_success")
    @patch("wake_puppy.scheduler.cli.emit_info")
    def test_add_resolves_session_path(self, mock_info, mock_success, manager, store, home, tmp_path):
        project = str(tmp_path / "repo")
        transcript = write_session(home, project)
        draft = ScheduleDraft(
            prompt="Continue",
            schedule_type="daily",
            time="09:00",
            project_path=project,
            session_id=SESSION_ID,
            timezone="UTC",
        )
        assert cli.handle_add(draft, manager) is True
        assert store.load()[0].session_path == str(transcript)

    @patch("wake_puppy.scheduler.cli.emit_error")
    def test_add_invalid(self, mock_error, manager, store):
        draft = ScheduleDraft(prompt="x", schedule_type="daily", time="9")
        assert cli.handle_add(draft, manager) is False
        assert "invalid time" in mock_error.call_args[0][0]
        assert store.load() == []

    @patch("wake_puppy.scheduler.cli.emit_info")
    @patch("wake_puppy.scheduler.cli.emit_success")
    def test_edit_changes_only_given_fields(self, mock_success, mock_info, manager, store):
        entry = manager.create(
            ScheduleDraft(prompt="Check CI", schedule_type="daily", time="09:00", model="opus", timezone="UTC")
        )

        assert cli.handle_edit(entry.id, {"time": "10:15", "prompt": None}, manager) is True

        stored = store.get(entry.id)
        assert stored.schedule.time == "10:15"
        assert stored.prompt == "Check CI"
        assert stored.model == "opus"
        mock_success.assert_called_once_with("Schedule updated.")

    @patch("wake_puppy.scheduler.cli.emit_info")
    @patch("wake_puppy.scheduler.cli.emit_success")
    def test_edit_switching_type_drops_old_fields(self, mock_success, mock_info, manager, store):
        entry = manager.create(
            ScheduleDraft(
                prompt="Weekly review",
                schedule_type="weekly",
                weekday="friday",
                time="17:00",
                timezone="UTC",
            )
        )

        assert cli.handle_edit(entry.id, {"schedule_type": "daily"}, manager) is True

        spec = store.get(entry.id).schedule
        assert spec.type.value == "daily"
        assert spec.weekday is None

    @patch("wake_puppy.scheduler.cli.emit_info")
    @patch("wake_puppy.scheduler.cli.emit_success")
    def test_edit_new_session_clears_session(self, mock_success, mock_info, manager, store):
        entry = manager.create(
            ScheduleDraft(
                prompt="Continue",
                schedule_type="daily",
                time="09:00",
                session_id=SESSION_ID,
                session_path="/tmp/s.jsonl",
                timezone="UTC",
            )
        )

        assert cli.handle_edit(entry.id, {"new_session": True, "session_id": None}, manager) is True

        stored = store.get(entry.id)
        assert stored.new_session is True
        assert stored.session_id is None
        assert stored.session_path is None

    @patch("wake_puppy.scheduler.cli.emit_error")
    def test_edit_unknown(self, mock_error, manager):
        assert cli.handle_edit("missing", {"time": "10:00"}, manager) is False
        mock_error.assert_called_once_with(str(ScheduleNotFoundError("missing")))

    @patch("wake_puppy.scheduler.cli.emit_info")
    @patch("wake_puppy.scheduler.cli.emit_success")
    def test_delete(self, mock_success, mock_info, manager, store):
        entry = manager.create(
            ScheduleDraft(prompt="Check CI", schedule_type="daily", time="09:00", timezone="UTC")
        )
        assert cli.handle_delete(entry.id, manager) is True
        assert store.load() == []
        mock_success.assert_called_once_with("Schedule deleted.")

    @patch("wake_puppy.scheduler.cli.emit_error")
    def test_delete_unknown(self, mock_error, manager):
        assert cli.handle_delete("missing", manager) is False


class TestMaintenance:
    """Tests for prune, sessions and token."""

    @patch("wake_puppy.scheduler.cli.emit_success")
    def test_prune(self, mock_success, store):
        assert cli.handle_prune(store) is True
        assert "keeping 50 runs" in mock_success.call_args[0][0]

    @patch("wake_puppy.scheduler.cli.emit_info")
    def test_sessions_by_project_path(self, mock_info, home, tmp_path):
        project = str(tmp_path / "repo")
        write_session(home, project)

        assert cli.handle_sessions(project) is True

        table = mock_info.call_args[0][0]
        assert table_column(table, 0) == [SESSION_ID]
        assert table_column(table, 2) == ["Earlier work"]

    @patch("wake_puppy.scheduler.cli.emit_info")
    def test_sessions_by_transcript_folder(self, mock_info, home, tmp_path):
        transcript = write_session(home, str(tmp_path / "repo"))
        assert cli.handle_sessions(str(transcript.parent)) is True
        assert table_column(mock_info.call_args[0][0], 0) == [SESSION_ID]

    @patch("wake_puppy.scheduler.cli.emit_error")
    def test_sessions_missing_project(self, mock_error, home, tmp_path):
        assert cli.handle_sessions(str(tmp_path / "nothing")) is False
        assert "project path not found" in mock_error.call_args[0][0]

    def test_resolve_session_path(self, home, tmp_path):
        project = str(tmp_path / "repo")
        transcript = write_session(home, project)
        assert cli.resolve_session_path(project, SESSION_ID) == str(transcript)
        assert cli.resolve_session_path(project, "other") is None
        assert cli.resolve_session_path("", SESSION_ID) is None

    @patch("wake_puppy.scheduler.cli.emit_success")
    def test_token_reads_first_nonblank_line(self, mock_success):
        saved = []

        class Recorder:
            def save(self, account, token):
                saved.append(token)

        assert cli.handle_token(io.StringIO("\n  tok-789  \nextra\n"), Recorder()) is True
        assert saved == ["tok-789"]

    @patch("wake_puppy.scheduler.cli.emit_error")
    def test_token_rejected(self, mock_error):
        class Refuser:
            def save(self, account, token):
                raise SetupError("setup token is empty")

        assert cli.handle_token(io.StringIO(""), Refuser()) is False
        mock_error.assert_called_once_with("setup token is empty")
