"""Running one schedule when launchd fires it.

``wake-puppy --run <id>`` lands here. A run loads the schedule, prepares a
log record and an output file, resolves the setup token, invokes the
target program (inside the account's session when we run as root), records
the outcome and finally retires a one-time schedule or re-arms a recurring
one. Every failure after the schedule is found leaves a log record behind.
"""

import logging
import os
import shlex
import shutil
import signal
import subprocess
from datetime import datetime
from typing import IO, Callable, Dict, List, Optional, Sequence, Tuple

from wake_puppy.observability import log_run_finished, log_run_started, log_schedule_event
from wake_puppy.paths import expand_home, is_internal_path
from wake_puppy.scheduler.auth import CredentialStore
from wake_puppy.scheduler.context import ENV, ExecutionContext, chown_quietly, run_as
from wake_puppy.scheduler.errors import (
    ScheduleNotFoundError,
    SchedulerError,
    SetupError,
)
from wake_puppy.scheduler.launchd import JobRegistrar
from wake_puppy.scheduler.notify import Notifier
from wake_puppy.scheduler.session_match import find_new_session
from wake_puppy.scheduler.store import Store, preview
from wake_puppy.scheduler.timeutil import format_wake_time, next_run
from wake_puppy.scheduler.types import (
    LogEntry,
    RunStatus,
    ScheduleEntry,
    ScheduleType,
    new_id,
)
from wake_puppy.scheduler.wake import WakeScheduler
from wake_puppy.sessions import extract_cwd
from wake_puppy.settings import SchedulerSettings, get_settings

logger = logging.getLogger(__name__)

TOKEN_ENV = "CLAUDE_CODE_OAUTH_TOKEN"
# Ambient credentials that would otherwise take precedence over the token.
BLANKED_ENV = ("ANTHROPIC_API_KEY", "ANTHROPIC_AUTH_TOKEN")

_RULE = "=" * 60


def _local_now() -> datetime:
    return datetime.now().astimezone()


def find_in_path(path_env: str, name: str) -> Optional[str]:
    """Locate executable ``name`` on ``path_env`` (the process PATH when empty)."""
    return shutil.which(name, path=path_env or None)


def _is_valid_work_dir(path: str, entry: ScheduleEntry, settings: SchedulerSettings) -> bool:
    if not path:
        return False
    if f"{os.sep}.claude{os.sep}projects{os.sep}" in path:
        return False
    if is_internal_path(path, entry.home_dir or None, settings):
        return False
    return os.path.isdir(path)


def resolve_work_dir(entry: ScheduleEntry, settings: Optional[SchedulerSettings] = None) -> str:
    """Directory the target program runs in.

    The project path when it's a real directory (and not a transcript
    folder or part of our own store), else the cwd recorded in the
    referenced session transcript, else the account's home.
    """
    settings = settings or get_settings()
    path = expand_home(entry.project_path.strip(), entry.home_dir or None)
    if _is_valid_work_dir(path, entry, settings):
        return path

    if entry.session_path:
        try:
            cwd = extract_cwd(entry.session_path)
        except OSError as exc:
            logger.debug("Could not read %s: %s", entry.session_path, exc)
            cwd = ""
        if _is_valid_work_dir(cwd, entry, settings):
            return cwd

    return entry.home_dir or os.path.expanduser("~")


def build_arguments(entry: ScheduleEntry) -> List[str]:
    """Target program arguments; the prompt always comes last."""
    args = ["-p"]
    if entry.model and entry.model != "auto":
        args += ["--model", entry.model]
    if entry.permission_mode and entry.permission_mode != "default":
        args += ["--permission-mode", entry.permission_mode]
    if not entry.new_session and entry.session_id:
        args += ["--resume", entry.session_id]
    args.append(entry.prompt)
    return args


def build_command(
    entry: ScheduleEntry, program: str, token: str, context: ExecutionContext
) -> Tuple[List[str], Dict[str, str]]:
    """argv and environment for the target program.

    The token is injected and competing credential variables are blanked.
    Across a privilege boundary the token travels through ``env`` on the
    command line, since ``sudo`` resets the inherited environment.
    """
    args = build_arguments(entry)
    credentials = {TOKEN_ENV: token}
    credentials.update({name: "" for name in BLANKED_ENV})

    if context.crosses_privilege:
        assignments = [f"{name}={value}" for name, value in credentials.items()]
        argv = run_as(context, [ENV, *assignments, program, *args], switch_user=True)
        return argv, context.account_env()

    return [program, *args], context.account_env(credentials)


def exit_status(returncode: int) -> Tuple[int, Optional[str]]:
    """(exit code, error text) for a finished process.

    A process killed by a signal keeps Popen's negative signal number.
    """
    if returncode == 0:
        return 0, None
    if returncode < 0:
        try:
            name = signal.Signals(-returncode).name
        except ValueError:
            name = str(-returncode)
        return returncode, f"terminated by signal {name}"
    return returncode, f"exit status {returncode}"


def run_with_keep_awake(
    argv: Sequence[str],
    *,
    cwd: str,
    env: Dict[str, str],
    output: IO,
    keep_awake_command: str = "caffeinate",
) -> int:
    """Run ``argv`` to completion while a keep-awake helper watches its pid.

    A missing helper only means the machine may sleep mid-run.

    Raises:
        OSError: if ``argv`` can't be started.
    """
    process = subprocess.Popen(
        list(argv),
        cwd=cwd,
        env=env,
        stdin=subprocess.DEVNULL,
        stdout=output,
        stderr=subprocess.STDOUT,
    )

    helper = None
    helper_path = shutil.which(keep_awake_command) if keep_awake_command else None
    if helper_path:
        try:
            helper = subprocess.Popen(
                [helper_path, "-d", "-i", "-s", "-w", str(process.pid)],
                stdout=output,
                stderr=output,
            )
        except OSError as exc:
            logger.debug("Keep-awake helper failed to start: %s", exc)

    returncode = process.wait()
    if helper is not None:
        helper.wait()
    return returncode


class ScheduleRunner:
    """Executes schedules by id with explicitly supplied collaborators."""

    def __init__(
        self,
        store: Store,
        *,
        settings: Optional[SchedulerSettings] = None,
        credentials: Optional[CredentialStore] = None,
        notifier: Optional[Notifier] = None,
        registrar: Optional[JobRegistrar] = None,
        wake: Optional[WakeScheduler] = None,
        elevated: Optional[bool] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.store = store
        self.settings = settings or get_settings()
        self.credentials = credentials or CredentialStore(self.settings)
        self.notifier = notifier or Notifier()
        self.registrar = registrar or JobRegistrar(self.settings)
        self.wake = wake or WakeScheduler(self.settings)
        self.elevated = elevated
        self.clock = clock or _local_now

    def run(self, schedule_id: str) -> LogEntry:
        """Execute one schedule and return the appended log record.

        The target program's own failure is recorded, not raised.

        Raises:
            ScheduleNotFoundError: if no schedule has ``schedule_id``.
            SetupError: if the run could not be prepared (logged first).
        """
        entry = self._find(schedule_id)
        context = ExecutionContext.for_entry(entry, self.elevated)
        log_entry = LogEntry(
            id=new_id(),
            schedule_id=entry.id,
            ran_at=self.clock(),
            status=RunStatus.ERROR,
            prompt_preview=preview(entry.prompt, self.settings.prompt_preview_chars),
            model=entry.model,
            session_id=entry.session_id,
            new_session=entry.new_session,
            project_path=entry.project_path or None,
        )
        try:
            return self._execute(entry, context, log_entry)
        finally:
            try:
                self.store.prune_logs(
                    self.settings.run_log_max,
                    self.settings.daemon_log_max,
                    entry.uid,
                    entry.gid,
                )
            except Exception as exc:
                logger.warning("Log pruning failed: %s", exc)

    def _find(self, schedule_id: str) -> ScheduleEntry:
        for entry in self.store.load():
            if entry.id == schedule_id:
                return entry
        raise ScheduleNotFoundError(schedule_id)

    def _execute(
        self, entry: ScheduleEntry, context: ExecutionContext, log_entry: LogEntry
    ) -> LogEntry:
        output_path = self.store.log_file_path(log_entry)
        try:
            self.store.ensure()
            output_path.parent.mkdir(parents=True, exist_ok=True)
            output = open(output_path, "a", encoding="utf-8")
        except (OSError, SchedulerError) as exc:
            self._record_failure(entry, log_entry, str(exc))
            raise SetupError(str(exc)) from exc

        with output:
            chown_quietly(output_path, entry.uid, entry.gid)
            try:
                token = self.credentials.resolve(context)
                program = find_in_path(entry.path_env, self.settings.target_program)
                if not program:
                    raise SetupError(
                        f"{self.settings.target_program} not found in PATH; "
                        f"install: {self.settings.install_command}"
                    )
            except SetupError as exc:
                self._record_failure(entry, log_entry, str(exc))
                raise

            work_dir = resolve_work_dir(entry, self.settings)
            argv, env = build_command(entry, program, token, context)
            display = shlex.join([program, *build_arguments(entry)])
            self._write_header(output, entry, display, work_dir)

            log_run_started(entry.id, entry.schedule.type.value, elevated=context.elevated)
            try:
                returncode = run_with_keep_awake(
                    argv,
                    cwd=work_dir,
                    env=env,
                    output=output,
                    keep_awake_command=self.settings.keep_awake_command,
                )
                exit_code, error = exit_status(returncode)
            except OSError as exc:
                exit_code, error = 1, str(exc)

            self._write_footer(output, exit_code, error)

        if error is None:
            log_entry.status = RunStatus.SUCCESS
        else:
            log_entry.error = error

        if log_entry.status == RunStatus.SUCCESS and entry.new_session and not log_entry.session_id:
            try:
                log_entry.session_id = find_new_session(
                    context, entry, log_entry.ran_at, self.clock(), self.settings
                )
            except Exception as exc:
                logger.debug("Session lookup failed: %s", exc)

        log_entry.exit_code = exit_code
        log_entry.output_path = str(output_path)
        self._append(entry, log_entry)
        log_run_finished(entry.id, log_entry.status.value, exit_code, log_entry.error)

        try:
            self.notifier.notify_run(context, log_entry)
        except Exception as exc:
            logger.debug("Notification failed: %s", exc)

        if entry.schedule.type == ScheduleType.ONCE:
            self._retire(entry)
        else:
            self._rearm(entry, context)
        return log_entry

    def _record_failure(self, entry: ScheduleEntry, log_entry: LogEntry, error: str) -> None:
        log_entry.error = error
        self._append(entry, log_entry)
        log_run_finished(entry.id, log_entry.status.value, log_entry.exit_code, error)

    def _append(self, entry: ScheduleEntry, log_entry: LogEntry) -> None:
        try:
            self.store.append_log(log_entry, entry.uid, entry.gid)
        except SchedulerError as exc:
            logger.error("Could not append run log for %s: %s", entry.id, exc)

    def _retire(self, entry: ScheduleEntry) -> None:
        self.registrar.remove_if_privileged(entry)
        try:
            self.store.delete(entry.id)
        except ScheduleNotFoundError:
            pass
        except SchedulerError as exc:
            logger.warning("Could not delete finished schedule %s: %s", entry.id, exc)
            return
        chown_quietly(self.store.schedules_file, entry.uid, entry.gid)
        log_schedule_event("retired", entry.id)

    def _rearm(self, entry: ScheduleEntry, context: ExecutionContext) -> None:
        now = self.clock()
        try:
            following = next_run(entry, now)
        except SchedulerError as exc:
            logger.warning("Could not compute next run for %s: %s", entry.id, exc)
            return

        entry.next_run = following
        entry.updated_at = now
        entry.wake_time = format_wake_time(following)
        try:
            self.store.update(entry)
        except SchedulerError as exc:
            logger.warning("Could not re-arm schedule %s: %s", entry.id, exc)
            return
        chown_quietly(self.store.schedules_file, entry.uid, entry.gid)

        if context.elevated:
            try:
                self.wake.schedule(entry, entry.wake_time)
            except SchedulerError as exc:
                logger.warning("Could not schedule wake for %s: %s", entry.id, exc)
        log_schedule_event("rearmed", entry.id, next_run=following.isoformat())

    @staticmethod
    def _write_header(output: IO, entry: ScheduleEntry, command: str, work_dir: str) -> None:
        output.write(f"\n{_RULE}\n")
        output.write(f"Schedule: {entry.id}\n")
        output.write(f"Started: {datetime.now().astimezone().isoformat()}\n")
        output.write(f"Command: {command}\n")
        output.write(f"Working Dir: {work_dir}\n")
        output.write(f"{_RULE}\n\n")
        output.flush()

    @staticmethod
    def _write_footer(output: IO, exit_code: int, error: Optional[str]) -> None:
        output.write(f"\n{_RULE}\n")
        output.write(f"Finished: {datetime.now().astimezone().isoformat()}\n")
        output.write(f"Exit Code: {exit_code}\n")
        if error:
            output.write(f"Error: {error}\n")
        output.write(f"{_RULE}\n")
        output.flush()


def run_schedule(store: Store, schedule_id: str) -> LogEntry:
    """Run ``schedule_id`` with the default collaborators."""
    return ScheduleRunner(store).run(schedule_id)
