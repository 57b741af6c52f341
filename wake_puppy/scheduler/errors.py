"""Exceptions raised by the schedule engine."""


class SchedulerError(Exception):
    """Base class for schedule engine errors."""


class ScheduleValidationError(SchedulerError, ValueError):
    """A schedule request is malformed or cannot fire in the future."""


class ScheduleNotFoundError(SchedulerError, KeyError):
    """No schedule with the requested id exists in the store."""

    def __init__(self, schedule_id: str):
        self.schedule_id = schedule_id
        super().__init__(schedule_id)

    def __str__(self) -> str:
        return f"schedule not found: {self.schedule_id}"


class StoreError(SchedulerError):
    """The schedule file could not be read, parsed or written."""


class SetupError(SchedulerError):
    """A run could not be prepared (directories, output file, executable)."""


class MissingCredentialError(SetupError):
    """The long-lived setup token could not be resolved."""


class RegistrationError(SchedulerError):
    """Installing or loading the OS timer job (or its wake request) failed."""


class PrivilegedCommandError(RegistrationError):
    """A command run through the privilege channel failed."""

    def __init__(self, argv, returncode=None, detail: str = ""):
        self.argv = list(argv)
        self.returncode = returncode
        message = f"{' '.join(self.argv)} failed"
        if returncode is not None:
            message += f" (exit {returncode})"
        if detail:
            message += f": {detail}"
        super().__init__(message)
