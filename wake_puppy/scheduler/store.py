"""Schedule list and run-log persistence.

Layout of a store directory:

    schedules.json      {"version": 1, "schedules": [...]}
    logs.jsonl          one LogEntry per line, append-only
    logs/               run-<id>-<stamp>.log output files and
                        daemon-<id>.{out,err}.log launchd stdout/stderr

Mutations are read-modify-write over the whole schedule file with no
locking: the last writer wins. Every rewrite goes through a temp file in
the same directory followed by an atomic rename, so a crash never leaves
a half-written file behind.
"""

import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable, List, Optional, Set, Tuple

from pydantic import ValidationError

from wake_puppy.scheduler.context import chown_quietly
from wake_puppy.scheduler.errors import ScheduleNotFoundError, StoreError
from wake_puppy.scheduler.types import LogEntry, ScheduleEntry, new_id
from wake_puppy.settings import SchedulerSettings, get_settings

logger = logging.getLogger(__name__)

SCHEDULE_VERSION = 1

SCHEDULES_FILENAME = "schedules.json"
LOGS_FILENAME = "logs.jsonl"
LOGS_DIRNAME = "logs"


@dataclass
class _LogFile:
    path: Path
    mtime: float


class Store:
    """File-backed repository for schedules and their run history."""

    def __init__(self, base_dir: os.PathLike):
        self.base_dir = Path(base_dir)
        self.logs_dir = self.base_dir / LOGS_DIRNAME
        self.schedules_file = self.base_dir / SCHEDULES_FILENAME
        self.logs_file = self.base_dir / LOGS_FILENAME

    @classmethod
    def for_home(
        cls, home: Optional[str] = None, settings: Optional[SchedulerSettings] = None
    ) -> "Store":
        """Store of the account whose home directory is ``home``."""
        settings = settings or get_settings()
        return cls(settings.support_dir(home))

    @classmethod
    def default(cls) -> "Store":
        return cls.for_home()

    def __repr__(self) -> str:
        return f"Store({str(self.base_dir)!r})"

    def ensure(self) -> None:
        """Create the store and log directories if they don't exist."""
        try:
            self.base_dir.mkdir(parents=True, exist_ok=True, mode=0o755)
            self.logs_dir.mkdir(parents=True, exist_ok=True, mode=0o755)
        except OSError as exc:
            raise StoreError(f"create data directory: {exc}") from exc

    # ------------------------------------------------------------------
    # Schedules
    # ------------------------------------------------------------------

    def load(self) -> List[ScheduleEntry]:
        """Load all schedules. A missing file is an empty list.

        An entry that fails validation is skipped with a warning so the
        remaining schedules keep working; ``save`` writes it back untouched.
        """
        entries, _ = self._read_schedules()
        return entries

    def _read_schedules(self) -> Tuple[List[ScheduleEntry], List[Any]]:
        """(valid entries, raw items that failed validation)."""
        self.ensure()
        try:
            raw = self.schedules_file.read_text(encoding="utf-8")
        except FileNotFoundError:
            return [], []
        except OSError as exc:
            raise StoreError(f"read schedules: {exc}") from exc

        try:
            document = json.loads(raw)
            items = document.get("schedules") or []
        except (ValueError, AttributeError) as exc:
            raise StoreError(f"parse schedules: {exc}") from exc
        if not isinstance(items, list):
            raise StoreError("parse schedules: schedules is not a list")

        entries: List[ScheduleEntry] = []
        skipped: List[Any] = []
        for item in items:
            try:
                entries.append(ScheduleEntry.from_dict(item))
            except ValidationError as exc:
                schedule_id = item.get("id") if isinstance(item, dict) else None
                logger.warning("Skipping unreadable schedule %s: %s", schedule_id, exc)
                skipped.append(item)
        return entries, skipped

    def save(self, entries: Iterable[ScheduleEntry]) -> None:
        """Atomically replace the schedule file with ``entries``.

        Items already on disk that don't validate are kept as they are.
        """
        entries = list(entries)
        try:
            _, skipped = self._read_schedules()
        except StoreError:
            skipped = []
        ids = {entry.id for entry in entries}
        kept = [item for item in skipped if not (isinstance(item, dict) and item.get("id") in ids)]
        document = {
            "version": SCHEDULE_VERSION,
            "schedules": [entry.to_dict() for entry in entries] + kept,
        }
        data = json.dumps(document, indent=2) + "\n"
        self._write_atomic(self.schedules_file, data)

    def get(self, schedule_id: str) -> ScheduleEntry:
        for entry in self.load():
            if entry.id == schedule_id:
                return entry
        raise ScheduleNotFoundError(schedule_id)

    def add(self, entry: ScheduleEntry) -> ScheduleEntry:
        entries = self.load()
        entries.append(entry)
        self.save(entries)
        return entry

    def update(self, entry: ScheduleEntry) -> None:
        """Replace the stored schedule with the same id."""
        entries = self.load()
        for i, existing in enumerate(entries):
            if existing.id == entry.id:
                entries[i] = entry
                self.save(entries)
                return
        raise ScheduleNotFoundError(entry.id)

    def delete(self, schedule_id: str) -> ScheduleEntry:
        """Remove a schedule and return it. The file is untouched when absent."""
        entries = self.load()
        removed: Optional[ScheduleEntry] = None
        kept = []
        for entry in entries:
            if removed is None and entry.id == schedule_id:
                removed = entry
                continue
            kept.append(entry)
        if removed is None:
            raise ScheduleNotFoundError(schedule_id)
        self.save(kept)
        return removed

    # ------------------------------------------------------------------
    # Run log
    # ------------------------------------------------------------------

    def append_log(
        self, entry: LogEntry, owner_uid: int = -1, owner_gid: int = -1
    ) -> LogEntry:
        """Append one record to the run log.

        When owner ids are given (a privileged run on behalf of another
        account) the log file is handed to that account so it can read it.
        """
        self.ensure()
        if not entry.id:
            entry.id = new_id()
        line = json.dumps(entry.to_dict()) + "\n"
        try:
            with open(self.logs_file, "a", encoding="utf-8") as f:
                f.write(line)
        except OSError as exc:
            raise StoreError(f"write log: {exc}") from exc
        chown_quietly(self.logs_file, owner_uid, owner_gid)
        return entry

    def load_logs(self, limit: int = 0) -> List[LogEntry]:
        """Return run log entries newest first; ``limit`` 0 means all."""
        self.ensure()
        entries: List[LogEntry] = []
        try:
            with open(self.logs_file, "r", encoding="utf-8") as f:
                for line in f:
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        entries.append(LogEntry.from_dict(json.loads(line)))
                    except (ValueError, TypeError, ValidationError):
                        continue
        except FileNotFoundError:
            return []
        except OSError as exc:
            raise StoreError(f"read logs: {exc}") from exc

        entries.sort(key=lambda e: e.ran_at, reverse=True)
        if limit > 0:
            entries = entries[:limit]
        return entries

    def log_file_path(self, entry: LogEntry) -> Path:
        """Output file for one run."""
        stamp = entry.ran_at.strftime("%Y%m%d-%H%M%S")
        return self.logs_dir / f"run-{entry.schedule_id}-{stamp}.log"

    def daemon_log_paths(self, schedule_id: str) -> Tuple[Path, Path]:
        """(stdout, stderr) files launchd writes for a schedule."""
        return (
            self.logs_dir / f"daemon-{schedule_id}.out.log",
            self.logs_dir / f"daemon-{schedule_id}.err.log",
        )

    # ------------------------------------------------------------------
    # Retention
    # ------------------------------------------------------------------

    def prune_logs(
        self,
        run_max: int,
        daemon_max: int,
        owner_uid: int = -1,
        owner_gid: int = -1,
    ) -> None:
        """Bound the run history and the log directory.

        The run log keeps its ``run_max`` newest entries and every run output
        file they don't reference is deleted (falling back to file age when
        nothing is kept). Daemon stdout/stderr files are never referenced by
        the run log, so they are bounded by age alone.
        """
        if run_max <= 0 and daemon_max <= 0:
            return
        self.ensure()

        entries = self.load_logs(0)
        if run_max > 0 and len(entries) > run_max:
            entries = entries[:run_max]

        keep: Set[str] = set()
        for entry in entries:
            path = entry.output_path or str(self.log_file_path(entry))
            keep.add(os.path.normpath(path))

        self._write_log_index(entries, owner_uid, owner_gid)
        self._prune_run_logs(run_max, keep)
        self._prune_daemon_logs(daemon_max)

    def _write_log_index(
        self, entries: List[LogEntry], owner_uid: int, owner_gid: int
    ) -> None:
        if not entries and not self.logs_file.exists():
            return
        # Newest-first in memory, chronological on disk.
        data = "".join(json.dumps(e.to_dict()) + "\n" for e in reversed(entries))
        self._write_atomic(self.logs_file, data)
        chown_quietly(self.logs_file, owner_uid, owner_gid)

    def _prune_run_logs(self, run_max: int, keep: Set[str]) -> None:
        if run_max <= 0:
            return
        files = self._list_log_files("run-", ".log")
        if not files:
            return

        if keep:
            for f in files:
                if os.path.normpath(str(f.path)) not in keep:
                    _remove_quietly(f.path)
            return

        files.sort(key=lambda f: f.mtime, reverse=True)
        for f in files[run_max:]:
            _remove_quietly(f.path)

    def _prune_daemon_logs(self, daemon_max: int) -> None:
        if daemon_max <= 0:
            return
        files = self._list_log_files("daemon-", ".log")
        if len(files) <= daemon_max:
            return
        files.sort(key=lambda f: f.mtime, reverse=True)
        for f in files[daemon_max:]:
            _remove_quietly(f.path)

    def _list_log_files(self, prefix: str, suffix: str) -> List[_LogFile]:
        try:
            children = list(os.scandir(self.logs_dir))
        except FileNotFoundError:
            return []
        files = []
        for child in children:
            name = child.name
            if not name.startswith(prefix) or not name.endswith(suffix):
                continue
            try:
                if not child.is_file():
                    continue
                mtime = child.stat().st_mtime
            except OSError:
                continue
            files.append(_LogFile(path=Path(child.path), mtime=mtime))
        return files

    def _write_atomic(self, path: Path, data: str) -> None:
        tmp = path.with_name(path.name + ".tmp")
        try:
            with open(tmp, "w", encoding="utf-8") as f:
                f.write(data)
            os.replace(tmp, path)
        except OSError as exc:
            _remove_quietly(tmp)
            raise StoreError(f"write {path.name}: {exc}") from exc


def _remove_quietly(path: Path) -> None:
    try:
        os.remove(path)
    except OSError:
        pass


def preview(text: str, max_chars: int) -> str:
    """Collapse whitespace and truncate with ``...`` to ``max_chars``."""
    text = " ".join((text or "").split())
    if len(text) <= max_chars:
        return text
    if max_chars <= 3:
        return text[:max_chars]
    return text[: max_chars - 3] + "..."
