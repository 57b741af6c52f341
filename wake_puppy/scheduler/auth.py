"""Setup-token storage in the login keychain."""

import logging
import subprocess
from typing import Optional

from wake_puppy.scheduler.context import ExecutionContext, run_as
from wake_puppy.scheduler.errors import MissingCredentialError, SetupError
from wake_puppy.scheduler.types import Account
from wake_puppy.settings import SchedulerSettings, get_settings

logger = logging.getLogger(__name__)

SECURITY = "/usr/bin/security"


class CredentialStore:
    """Reads and writes the long-lived token the scheduled program needs."""

    def __init__(self, settings: Optional[SchedulerSettings] = None):
        self.settings = settings or get_settings()

    def _missing(self) -> MissingCredentialError:
        return MissingCredentialError(
            f"missing setup token; run {self.settings.setup_token_command}"
        )

    def resolve(self, context: ExecutionContext) -> str:
        """Look the token up, inside the account's session when running as root.

        Raises:
            MissingCredentialError: if the lookup fails or yields nothing.
        """
        argv = [SECURITY, "find-generic-password", "-s", self.settings.credential_service, "-w"]
        if context.account.user:
            argv += ["-a", context.account.user]

        env = None
        if context.crosses_privilege:
            argv = run_as(context, argv)
            env = context.account_env({"LANG": "C"})

        try:
            completed = subprocess.run(
                argv, env=env, capture_output=True, text=True, check=False
            )
        except OSError as exc:
            logger.debug("credential lookup failed to start: %s", exc)
            raise self._missing() from exc

        if completed.returncode != 0:
            logger.debug(
                "credential lookup exited %s: %s",
                completed.returncode,
                completed.stderr.strip(),
            )
            raise self._missing()
        token = completed.stdout.strip()
        if not token:
            raise self._missing()
        return token

    def save(self, account: Account, token: str) -> None:
        """Store ``token`` for ``account``, replacing any previous value.

        Raises:
            SetupError: if the token is blank or the keychain rejects it.
        """
        token = token.strip()
        if not token:
            raise SetupError("setup token is empty")
        argv = [
            SECURITY,
            "add-generic-password",
            "-U",
            "-s",
            self.settings.credential_service,
            "-a",
            account.user,
            "-w",
            token,
        ]
        try:
            completed = subprocess.run(argv, capture_output=True, text=True, check=False)
        except OSError as exc:
            raise SetupError(f"store setup token: {exc}") from exc
        if completed.returncode != 0:
            detail = completed.stderr.strip() or f"exit status {completed.returncode}"
            raise SetupError(f"store setup token: {detail}")
