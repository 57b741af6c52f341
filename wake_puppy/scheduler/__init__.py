"""Wake Puppy schedule engine - run prompts unattended at a set time.

Schedules fire through one launchd job each, and a pmset wake request
makes sure a sleeping machine is up when they do.

Components:
    - types: Schedule, run-log and account models
    - timeutil: Next-fire-time resolution
    - store: JSON persistence of schedules and run history
    - launchd / wake: OS timer job and wake registration
    - executor: Running a schedule when its job fires
    - manager: Create/update/delete keeping store and OS in step
"""

from wake_puppy.scheduler.errors import (
    MissingCredentialError,
    RegistrationError,
    ScheduleNotFoundError,
    ScheduleValidationError,
    SchedulerError,
    SetupError,
    StoreError,
)
from wake_puppy.scheduler.store import Store
from wake_puppy.scheduler.types import (
    LogEntry,
    RunStatus,
    ScheduleEntry,
    ScheduleSpec,
    ScheduleType,
)

__all__ = [
    "Store",
    "ScheduleEntry",
    "ScheduleSpec",
    "ScheduleType",
    "LogEntry",
    "RunStatus",
    "SchedulerError",
    "ScheduleValidationError",
    "ScheduleNotFoundError",
    "StoreError",
    "SetupError",
    "MissingCredentialError",
    "RegistrationError",
]
