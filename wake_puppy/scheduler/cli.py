"""CLI subcommands for the scheduler.

Each handler reports through the messaging helpers and returns True on
success, False otherwise. Collaborators can be passed in; by default they
are built from the current settings.
"""

import dataclasses
import sys
from datetime import datetime
from typing import Any, Dict, List, Optional, TextIO

from rich.table import Table

from wake_puppy.messaging import emit_error, emit_info, emit_success, emit_warning
from wake_puppy.paths import humanize_path, normalize_path, project_dir_name, projects_root
from wake_puppy.scheduler.auth import CredentialStore
from wake_puppy.scheduler.errors import SchedulerError
from wake_puppy.scheduler.executor import run_schedule
from wake_puppy.scheduler.manager import ScheduleDraft, ScheduleManager
from wake_puppy.scheduler.store import Store, preview
from wake_puppy.scheduler.timeutil import relative_label
from wake_puppy.scheduler.types import Account, RunStatus, ScheduleEntry
from wake_puppy.sessions import find_session, list_sessions
from wake_puppy.settings import get_settings


def _now() -> datetime:
    return datetime.now().astimezone()


def _describe_when(entry: ScheduleEntry) -> str:
    spec = entry.schedule
    if spec.date:
        return f"{spec.type.value} {spec.date} {spec.time}"
    if spec.weekday:
        return f"{spec.type.value} {spec.weekday.capitalize()} {spec.time}"
    return f"{spec.type.value} {spec.time}"


def _sort_key(entry: ScheduleEntry):
    # Soonest first; entries without a next run go last.
    return (entry.next_run is None, entry.next_run or entry.created_at, entry.created_at)


def handle_run(schedule_id: str, store: Optional[Store] = None) -> bool:
    """Execute a schedule now. This is what launchd invokes."""
    store = store or Store.default()
    try:
        log_entry = run_schedule(store, schedule_id)
    except SchedulerError as exc:
        # Not found, setup failures and unreadable stores; the target
        # program's own exit status is only recorded in the run log.
        emit_error(str(exc))
        return False

    if log_entry.status == RunStatus.SUCCESS:
        emit_success(f"Run of {schedule_id} completed")
    else:
        emit_warning(f"Run of {schedule_id} failed: {log_entry.error}")
    return True


def handle_list(store: Optional[Store] = None) -> bool:
    """List all schedules, soonest first."""
    store = store or Store.default()
    try:
        entries = store.load()
    except SchedulerError as exc:
        emit_error(str(exc))
        return False

    if not entries:
        emit_info("No schedules configured.")
        emit_info("Use 'wake-puppy add' to create one.")
        return True

    now = _now()
    table = Table(title=f"Schedules ({len(entries)})")
    table.add_column("ID", no_wrap=True)
    table.add_column("When")
    table.add_column("Next run")
    table.add_column("Project")
    table.add_column("Prompt")
    for entry in sorted(entries, key=_sort_key):
        next_label = ""
        if entry.next_run is not None:
            next_label = (
                f"{entry.next_run.strftime('%Y-%m-%d %H:%M')} "
                f"({relative_label(entry.next_run, now)})"
            )
        table.add_row(
            entry.id,
            _describe_when(entry),
            next_label,
            humanize_path(entry.project_path, entry.home_dir or None) if entry.project_path else "",
            preview(entry.prompt, 60),
        )
    emit_info(table)
    return True


def handle_logs(limit: int = 0, store: Optional[Store] = None) -> bool:
    """Show the run history, newest first."""
    store = store or Store.default()
    try:
        entries = store.load_logs(limit)
    except SchedulerError as exc:
        emit_error(str(exc))
        return False

    if not entries:
        emit_info("No runs recorded yet.")
        return True

    now = _now()
    table = Table(title=f"Runs ({len(entries)})")
    table.add_column("Ran")
    table.add_column("Schedule", no_wrap=True)
    table.add_column("Status")
    table.add_column("Exit")
    table.add_column("Detail")
    for entry in entries:
        status = "[green]success[/green]" if entry.status == RunStatus.SUCCESS else "[red]error[/red]"
        detail = entry.error if entry.status != RunStatus.SUCCESS and entry.error else entry.prompt_preview
        table.add_row(
            relative_label(entry.ran_at, now),
            entry.schedule_id,
            status,
            str(entry.exit_code),
            preview(detail or "", 80),
        )
    emit_info(table)
    return True


def _print_entry(heading: str, entry: ScheduleEntry) -> None:
    emit_success(heading)
    emit_info(f"ID: {entry.id}")
    if entry.next_run is not None:
        emit_info(
            f"Next run: {entry.next_run.strftime('%a, %d %b %Y %H:%M:%S %Z')} "
            f"({relative_label(entry.next_run, _now())})"
        )
    if entry.project_path:
        emit_info(f"Project: {humanize_path(entry.project_path)}")


def resolve_session_path(project_path: str, session_id: str) -> Optional[str]:
    """Transcript path of ``session_id`` for a project, when it exists."""
    if not project_path or not session_id:
        return None
    folder = projects_root() / project_dir_name(project_path)
    try:
        session = find_session(str(folder), session_id)
    except OSError:
        return None
    return session.path if session else None


def handle_add(draft: ScheduleDraft, manager: Optional[ScheduleManager] = None) -> bool:
    """Create a schedule and register it with launchd and pmset."""
    manager = manager or ScheduleManager(Store.default())
    if draft.session_id and not draft.session_path:
        draft.session_path = resolve_session_path(draft.project_path, draft.session_id)
    try:
        entry = manager.create(draft)
    except SchedulerError as exc:
        emit_error(str(exc))
        return False
    _print_entry("Scheduled.", entry)
    return True


def draft_from_entry(entry: ScheduleEntry) -> ScheduleDraft:
    """Draft reproducing an existing schedule, as the base for edits."""
    spec = entry.schedule
    return ScheduleDraft(
        prompt=entry.prompt,
        schedule_type=spec.type.value,
        time=spec.time,
        project_path=entry.project_path,
        session_id=entry.session_id,
        session_path=entry.session_path,
        new_session=entry.new_session,
        model=entry.model,
        permission_mode=entry.permission_mode or "",
        date=spec.date,
        weekday=spec.weekday,
        timezone=entry.timezone,
    )


def handle_edit(
    schedule_id: str,
    changes: Dict[str, Any],
    manager: Optional[ScheduleManager] = None,
) -> bool:
    """Change some fields of a schedule and re-register it."""
    manager = manager or ScheduleManager(Store.default())
    try:
        current = manager.store.get(schedule_id)
        changes = {k: v for k, v in changes.items() if v is not None}
        if "schedule_type" in changes:
            # Switching type drops the fields the old type needed.
            changes.setdefault("date", None)
            changes.setdefault("weekday", None)
        draft = dataclasses.replace(draft_from_entry(current), **changes)
        if draft.new_session:
            draft.session_id = None
            draft.session_path = None
        elif "session_id" in changes and "session_path" not in changes:
            draft.session_path = resolve_session_path(draft.project_path, draft.session_id or "")
        entry = manager.update(schedule_id, draft)
    except SchedulerError as exc:
        emit_error(str(exc))
        return False
    _print_entry("Schedule updated.", entry)
    return True


def handle_delete(schedule_id: str, manager: Optional[ScheduleManager] = None) -> bool:
    """Unregister and remove a schedule."""
    manager = manager or ScheduleManager(Store.default())
    try:
        entry = manager.delete(schedule_id)
    except SchedulerError as exc:
        emit_error(str(exc))
        return False
    emit_success("Schedule deleted.")
    emit_info(f"ID: {entry.id}")
    return True


def handle_prune(store: Optional[Store] = None) -> bool:
    """Apply the log retention limits now."""
    store = store or Store.default()
    settings = get_settings()
    try:
        store.prune_logs(settings.run_log_max, settings.daemon_log_max)
    except SchedulerError as exc:
        emit_error(str(exc))
        return False
    emit_success(
        f"Logs pruned (keeping {settings.run_log_max} runs, "
        f"{settings.daemon_log_max} daemon logs)"
    )
    return True


def _transcript_dir(path: str) -> str:
    """Accept either a transcript folder or the project directory itself."""
    normalized = normalize_path(path)
    root = str(projects_root())
    if normalized.startswith(root):
        return normalized
    return str(projects_root() / project_dir_name(normalized))


def handle_sessions(path: str) -> bool:
    """List the sessions recorded for a project."""
    try:
        sessions = list_sessions(_transcript_dir(path))
    except (OSError, ValueError) as exc:
        emit_error(str(exc))
        return False

    if not sessions:
        emit_info("No sessions found.")
        return True

    table = Table(title=f"Sessions ({len(sessions)})")
    table.add_column("ID", no_wrap=True)
    table.add_column("Modified")
    table.add_column("Preview")
    for session in sessions:
        table.add_row(session.id, session.rel_time, session.preview)
    emit_info(table)
    return True


def handle_token(
    stream: Optional[TextIO] = None, credentials: Optional[CredentialStore] = None
) -> bool:
    """Store a setup token read from ``stream`` (stdin by default)."""
    stream = stream or sys.stdin
    credentials = credentials or CredentialStore()
    lines: List[str] = [line.strip() for line in stream.read().splitlines()]
    token = next((line for line in lines if line), "")
    try:
        credentials.save(Account.current(), token)
    except SchedulerError as exc:
        emit_error(str(exc))
        return False
    emit_success("Setup token saved.")
    return True
