"""Schedule, run-log and account types.

The schedule file and the run log are JSON documents shared with other
tools, so every model serializes with camelCase keys (``projectPath``,
``nextRun``, ``ranAt``...) and omits unset optional fields.
"""

import os
import pwd
import uuid
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from wake_puppy.settings import SchedulerSettings, get_settings

# Index matches launchd's Weekday numbering (Sunday = 0).
WEEKDAYS = (
    "sunday",
    "monday",
    "tuesday",
    "wednesday",
    "thursday",
    "friday",
    "saturday",
)


def new_id() -> str:
    """Return a fresh opaque identifier for schedules and log entries."""
    return str(uuid.uuid4())


def _now() -> datetime:
    return datetime.now().astimezone()


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    # Naive timestamps are read as local time.
    if value is not None and value.tzinfo is None:
        return value.astimezone()
    return value


class ScheduleType(str, Enum):
    """Supported recurrence kinds."""

    ONCE = "once"
    DAILY = "daily"
    WEEKLY = "weekly"


class RunStatus(str, Enum):
    """Outcome of one execution attempt."""

    SUCCESS = "success"
    ERROR = "error"


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]):
        return cls.model_validate(data)


class ScheduleSpec(_CamelModel):
    """When a schedule fires.

    ``time`` is a 24-hour ``HH:MM`` clock string. ``date`` (``YYYY-MM-DD``)
    only belongs to one-time schedules and ``weekday`` only to weekly ones.
    """

    type: ScheduleType
    date: Optional[str] = None
    time: str = ""
    weekday: Optional[str] = None

    @field_validator("date", "weekday", mode="before")
    @classmethod
    def blank_is_absent(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @model_validator(mode="after")
    def check_fields_match_type(self) -> "ScheduleSpec":
        kind = self.type.value
        if not self.time.strip():
            raise ValueError(f"{kind} schedule requires a time")

        if self.type is ScheduleType.ONCE:
            if not self.date:
                raise ValueError("once schedule requires a date")
            try:
                datetime.strptime(self.date, "%Y-%m-%d")
            except ValueError:
                raise ValueError(f"invalid date: {self.date}") from None
        elif self.date:
            raise ValueError(f"date is not valid for a {kind} schedule")

        if self.type is ScheduleType.WEEKLY:
            if not self.weekday:
                raise ValueError("weekly schedule requires a weekday")
            if self.weekday.strip().lower() not in WEEKDAYS:
                raise ValueError(f"invalid weekday: {self.weekday}")
        elif self.weekday:
            raise ValueError(f"weekday is not valid for a {kind} schedule")
        return self


@dataclass
class Account:
    """The OS account a schedule runs as."""

    user: str
    uid: int
    gid: int
    home_dir: str
    path_env: str

    @classmethod
    def current(cls, settings: Optional[SchedulerSettings] = None) -> "Account":
        """Capture the invoking account from the process environment."""
        settings = settings or get_settings()
        uid = os.getuid()
        gid = os.getgid()
        user = os.environ.get("USER", "")
        try:
            record = pwd.getpwuid(uid)
        except KeyError:
            record = None
        if record is not None:
            user = record.pw_name or user
            gid = record.pw_gid
        return cls(
            user=user,
            uid=uid,
            gid=gid,
            home_dir=os.path.expanduser("~"),
            path_env=os.environ.get("PATH") or settings.default_path_env,
        )


class ScheduleEntry(_CamelModel):
    """A persisted unit of work: what to run, when, and as whom."""

    id: str = Field(default_factory=new_id)

    # Target description, passed through to the scheduled program
    project_path: str = ""
    session_id: Optional[str] = None
    session_path: Optional[str] = None
    new_session: bool = False
    model: str = ""
    permission_mode: Optional[str] = None
    prompt: str = ""

    schedule: ScheduleSpec
    timezone: str = ""

    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)
    next_run: Optional[datetime] = None
    wake_time: str = ""  # pmset rendering of next_run

    # Execution identity
    binary_path: str = ""
    user: str = ""
    uid: int = -1
    gid: int = -1
    home_dir: str = ""
    path_env: str = ""

    @field_validator("created_at", "updated_at", "next_run")
    @classmethod
    def times_are_aware(cls, value: Optional[datetime]) -> Optional[datetime]:
        return _aware(value)

    @property
    def account(self) -> Account:
        return Account(
            user=self.user,
            uid=self.uid,
            gid=self.gid,
            home_dir=self.home_dir,
            path_env=self.path_env,
        )


class LogEntry(_CamelModel):
    """One record per execution attempt."""

    id: str = ""
    schedule_id: str
    ran_at: datetime = Field(default_factory=_now)
    status: RunStatus = RunStatus.ERROR
    exit_code: int = 0
    error: Optional[str] = None
    prompt_preview: str = ""
    model: str = ""
    session_id: Optional[str] = None
    new_session: bool = False
    output_path: Optional[str] = None
    project_path: Optional[str] = None

    @field_validator("ran_at")
    @classmethod
    def ran_at_aware(cls, value: datetime) -> datetime:
        return _aware(value)
