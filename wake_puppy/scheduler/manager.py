"""Creating, editing and deleting schedules.

A schedule only works when three things agree: the store entry, the
launchd job and the pmset wake request. ``ScheduleManager`` keeps them in
step and rolls a half-finished create back.
"""

import logging
import os
import shutil
import sys
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from pydantic import ValidationError

from wake_puppy.observability import log_schedule_event
from wake_puppy.scheduler.context import PrivilegeChannel
from wake_puppy.scheduler.errors import (
    RegistrationError,
    ScheduleValidationError,
    SchedulerError,
)
from wake_puppy.scheduler.launchd import JobRegistrar
from wake_puppy.scheduler.store import Store
from wake_puppy.scheduler.timeutil import format_wake_time, next_run, validate_clock
from wake_puppy.scheduler.types import Account, ScheduleEntry, ScheduleSpec
from wake_puppy.scheduler.wake import WakeScheduler
from wake_puppy.settings import SchedulerSettings, get_settings

logger = logging.getLogger(__name__)


@dataclass
class ScheduleDraft:
    """What a user asked for, before identity and timing are filled in."""

    prompt: str
    schedule_type: str
    time: str
    project_path: str = ""
    session_id: Optional[str] = None
    session_path: Optional[str] = None
    new_session: bool = False
    model: str = ""
    permission_mode: str = ""
    date: Optional[str] = None
    weekday: Optional[str] = None
    timezone: str = ""


def resolve_binary_path(settings: Optional[SchedulerSettings] = None) -> str:
    """Absolute path launchd should invoke for ``--run``."""
    settings = settings or get_settings()
    if settings.binary_path:
        return settings.binary_path
    found = shutil.which("wake-puppy")
    if found:
        return os.path.abspath(found)
    return os.path.abspath(sys.argv[0])


def build_entry(
    draft: ScheduleDraft,
    existing: Optional[ScheduleEntry] = None,
    *,
    now: Optional[datetime] = None,
    account: Optional[Account] = None,
    binary_path: Optional[str] = None,
    settings: Optional[SchedulerSettings] = None,
) -> ScheduleEntry:
    """Turn ``draft`` into a complete entry with its next fire time.

    Editing keeps the id and creation time of ``existing`` and falls back
    to its values for anything the draft leaves blank.

    Raises:
        ScheduleValidationError: for a malformed draft or a time in the past.
    """
    settings = settings or get_settings()
    now = now or datetime.now().astimezone()
    account = account or Account.current(settings)

    clock = validate_clock(draft.time)
    prompt = (draft.prompt or "").strip()
    if not prompt:
        raise ScheduleValidationError("prompt is required")

    try:
        spec = ScheduleSpec(
            type=draft.schedule_type,
            date=draft.date,
            time=clock,
            weekday=draft.weekday,
        )
    except ValidationError as exc:
        raise ScheduleValidationError(_validation_message(exc)) from None

    model = (draft.model or "").strip() or settings.default_model
    permission_mode = (draft.permission_mode or "").strip() or settings.default_permission_mode

    fields = dict(
        project_path=draft.project_path,
        session_id=draft.session_id,
        session_path=draft.session_path,
        new_session=draft.new_session,
        model=model,
        permission_mode=permission_mode,
        prompt=prompt,
        schedule=spec,
        timezone=draft.timezone,
        created_at=now,
        updated_at=now,
        binary_path=binary_path or resolve_binary_path(settings),
        user=account.user,
        uid=account.uid,
        gid=account.gid,
        home_dir=account.home_dir,
        path_env=account.path_env,
    )
    if existing is not None:
        fields["id"] = existing.id
        fields["created_at"] = existing.created_at
        for name in ("timezone", "permission_mode", "user", "home_dir", "path_env"):
            if not fields[name]:
                fields[name] = getattr(existing, name)
    if not fields["path_env"]:
        fields["path_env"] = settings.default_path_env

    entry = ScheduleEntry(**fields)
    entry.next_run = next_run(entry, now)
    entry.wake_time = format_wake_time(entry.next_run)
    return entry


def _validation_message(exc: ValidationError) -> str:
    messages = []
    for error in exc.errors():
        message = str(error.get("msg", ""))
        messages.append(message.removeprefix("Value error, "))
    return "; ".join(messages) or str(exc)


class ScheduleManager:
    """Store, launchd job and wake request changes made together."""

    def __init__(
        self,
        store: Store,
        *,
        settings: Optional[SchedulerSettings] = None,
        channel: Optional[PrivilegeChannel] = None,
        registrar: Optional[JobRegistrar] = None,
        wake: Optional[WakeScheduler] = None,
        account: Optional[Account] = None,
        binary_path: Optional[str] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.store = store
        self.settings = settings or get_settings()
        self.channel = channel or PrivilegeChannel()
        self.registrar = registrar or JobRegistrar(self.settings, self.channel)
        self.wake = wake or WakeScheduler(self.settings, self.channel)
        self.account = account
        self.binary_path = binary_path
        self.clock = clock or (lambda: datetime.now().astimezone())

    def _build(self, draft: ScheduleDraft, existing: Optional[ScheduleEntry] = None) -> ScheduleEntry:
        return build_entry(
            draft,
            existing,
            now=self.clock(),
            account=self.account,
            binary_path=self.binary_path,
            settings=self.settings,
        )

    def _ensure_privilege(self, action: str) -> None:
        try:
            self.channel.ensure()
        except RegistrationError as exc:
            raise RegistrationError(f"sudo required to {action} a schedule") from exc

    def create(self, draft: ScheduleDraft) -> ScheduleEntry:
        """Persist and register a new schedule.

        Nothing is left behind on failure: a failed install removes the
        stored entry and a failed wake request also removes the job.
        """
        entry = self._build(draft)
        self._ensure_privilege("create")
        self.store.add(entry)

        try:
            self.registrar.install(entry, self.clock())
        except RegistrationError:
            self._discard(entry)
            raise

        try:
            self.wake.schedule(entry, entry.wake_time)
        except RegistrationError:
            self._discard(entry)
            self.registrar.remove(entry)
            raise

        log_schedule_event("created", entry.id, schedule_type=entry.schedule.type.value)
        return entry

    def update(self, schedule_id: str, draft: ScheduleDraft) -> ScheduleEntry:
        """Replace a schedule's definition and re-register it."""
        current = self.store.get(schedule_id)
        entry = self._build(draft, current)
        self._ensure_privilege("update")

        self.registrar.remove(current)
        self._cancel_wake(current)
        self.store.update(entry)
        self.registrar.install(entry, self.clock())
        self.wake.schedule(entry, entry.wake_time)

        log_schedule_event("updated", entry.id, schedule_type=entry.schedule.type.value)
        return entry

    def delete(self, schedule_id: str) -> ScheduleEntry:
        """Unregister and remove a schedule; unknown ids change nothing."""
        current = self.store.get(schedule_id)
        self._ensure_privilege("delete")

        self.registrar.remove(current)
        self._cancel_wake(current)
        self.store.delete(current.id)

        log_schedule_event("deleted", current.id)
        return current

    def _cancel_wake(self, entry: ScheduleEntry) -> None:
        try:
            self.wake.cancel(entry)
        except RegistrationError as exc:
            logger.warning("Failed to cancel previous wake schedule: %s", exc)

    def _discard(self, entry: ScheduleEntry) -> None:
        try:
            self.store.delete(entry.id)
        except SchedulerError as exc:
            logger.warning("Rollback of %s failed: %s", entry.id, exc)
