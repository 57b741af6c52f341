"""Privilege handling for registering and running schedules.

Registering a schedule needs root (the launchd system domain and pmset).
A fired job starts as root and has to act inside the scheduling user's
login session, otherwise session-scoped resources like the keychain are
out of reach. Both concerns are expressed through values passed in
explicitly rather than read from the process mid-run:

- ExecutionContext: the target account plus whether we hold root.
- PrivilegeChannel: runs administrative commands, via sudo when needed.
"""

import logging
import os
import subprocess
from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional, Sequence

from wake_puppy.scheduler.errors import PrivilegedCommandError
from wake_puppy.scheduler.types import Account, ScheduleEntry

logger = logging.getLogger(__name__)

LAUNCHCTL = "/bin/launchctl"
SUDO = "/usr/bin/sudo"
ENV = "/usr/bin/env"


def is_elevated() -> bool:
    """True when the process runs with root privileges."""
    return os.geteuid() == 0


def chown_quietly(path: os.PathLike, uid: int, gid: int) -> None:
    """Hand ``path`` to ``uid:gid``. Negative ids mean leave it alone."""
    if uid < 0 or gid < 0:
        return
    try:
        os.chown(path, uid, gid)
    except OSError as exc:
        logger.debug("chown %s to %s:%s failed: %s", path, uid, gid, exc)


@dataclass
class ExecutionContext:
    """Who a run acts as, and whether a privilege boundary is crossed."""

    account: Account
    elevated: bool = False

    @classmethod
    def for_entry(
        cls, entry: ScheduleEntry, elevated: Optional[bool] = None
    ) -> "ExecutionContext":
        return cls(
            account=entry.account,
            elevated=is_elevated() if elevated is None else elevated,
        )

    @property
    def crosses_privilege(self) -> bool:
        """Running as root on behalf of a regular account."""
        return self.elevated and self.account.uid > 0

    def account_env(
        self,
        extra: Optional[Mapping[str, str]] = None,
        base: Optional[Mapping[str, str]] = None,
    ) -> Dict[str, str]:
        """Inherited environment pointed at the account's HOME, USER and PATH."""
        env = dict(os.environ if base is None else base)
        account = self.account
        if account.home_dir:
            env["HOME"] = account.home_dir
        if account.user:
            env["USER"] = account.user
            env["LOGNAME"] = account.user
        if account.path_env:
            env["PATH"] = account.path_env
        if extra:
            env.update(extra)
        return env


def run_as(
    context: ExecutionContext, argv: Sequence[str], *, switch_user: bool = False
) -> List[str]:
    """Wrap ``argv`` so it executes inside the account's session.

    Without a privilege boundary the command is returned unchanged. With
    one, ``launchctl asuser`` enters the account's bootstrap namespace and,
    when ``switch_user`` is set, ``sudo -u`` also drops to its uid.
    """
    if not context.crosses_privilege:
        return list(argv)
    wrapped = [LAUNCHCTL, "asuser", str(context.account.uid)]
    if switch_user:
        wrapped += [SUDO, "-u", context.account.user, "-H", "--"]
    return wrapped + list(argv)


class PrivilegeChannel:
    """Runs administrative commands, prefixing ``sudo`` unless already root."""

    def __init__(self, elevated: Optional[bool] = None):
        self._elevated = elevated

    @property
    def elevated(self) -> bool:
        return is_elevated() if self._elevated is None else self._elevated

    def ensure(self) -> None:
        """Prompt for (and cache) sudo credentials up front."""
        if self.elevated:
            return
        self._call(["sudo", "-v"], quiet=False)

    def run(self, *argv: str, quiet: bool = False) -> None:
        """Run ``argv`` with root privileges.

        Raises:
            PrivilegedCommandError: if the command can't start or exits nonzero.
        """
        cmd = list(argv) if self.elevated else ["sudo", *argv]
        self._call(cmd, quiet)

    def _call(self, cmd: List[str], quiet: bool) -> None:
        output = subprocess.DEVNULL if quiet else None
        try:
            completed = subprocess.run(cmd, stdout=output, stderr=output, check=False)
        except OSError as exc:
            raise PrivilegedCommandError(cmd, detail=str(exc)) from exc
        if completed.returncode != 0:
            raise PrivilegedCommandError(cmd, completed.returncode)
