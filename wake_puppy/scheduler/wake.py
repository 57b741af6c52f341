"""pmset wake requests, so a sleeping machine is up when a job fires."""

import logging
from typing import Optional

from wake_puppy.scheduler.context import PrivilegeChannel
from wake_puppy.scheduler.types import ScheduleEntry
from wake_puppy.settings import SchedulerSettings, get_settings

logger = logging.getLogger(__name__)


class WakeScheduler:
    """Registers and cancels ``wakeorpoweron`` events owned by a schedule."""

    def __init__(
        self,
        settings: Optional[SchedulerSettings] = None,
        channel: Optional[PrivilegeChannel] = None,
    ):
        self.settings = settings or get_settings()
        self.channel = channel or PrivilegeChannel()

    def owner(self, schedule_id: str) -> str:
        # Same string as the launchd label.
        return f"{self.settings.job_label_prefix}.{schedule_id}"

    def schedule(self, entry: ScheduleEntry, when: str) -> None:
        """Request a wake at ``when`` (pmset format). Empty means nothing to do.

        Raises:
            PrivilegedCommandError: if pmset rejects the request.
        """
        if not when:
            return
        self.channel.run("pmset", "schedule", "wakeorpoweron", when, self.owner(entry.id))
        logger.info("Scheduled wake for %s at %s", entry.id, when)

    def cancel(self, entry: ScheduleEntry) -> None:
        """Cancel the wake recorded in ``entry.wake_time``, if any."""
        if not entry.wake_time:
            return
        self.channel.run(
            "pmset",
            "schedule",
            "cancel",
            "wakeorpoweron",
            entry.wake_time,
            self.owner(entry.id),
        )
