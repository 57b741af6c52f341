"""Desktop notification at the end of each run."""

import logging
import subprocess

from wake_puppy.scheduler.context import ExecutionContext, run_as
from wake_puppy.scheduler.types import LogEntry, RunStatus

logger = logging.getLogger(__name__)

OSASCRIPT = "/usr/bin/osascript"
NOTIFICATION_TITLE = "Wake Puppy"
NOTIFICATION_MAX_CHARS = 140


def is_meaningful_error(error: str) -> bool:
    """Plain exit statuses add nothing over the "Run failed" subtitle."""
    error = (error or "").strip()
    if not error:
        return False
    return not error.lower().startswith("exit status")


def truncate_notification(text: str, max_chars: int = NOTIFICATION_MAX_CHARS) -> str:
    if max_chars <= 0:
        return ""
    text = (text or "").strip()
    if len(text) <= max_chars:
        return text
    if max_chars <= 3:
        return text[:max_chars]
    return text[: max_chars - 3] + "..."


def escape_applescript(text: str) -> str:
    text = text.replace("\\", "\\\\")
    text = text.replace('"', '\\"')
    return text.replace("\n", " ").replace("\r", " ")


def build_notification_script(log_entry: LogEntry) -> str:
    succeeded = log_entry.status == RunStatus.SUCCESS
    subtitle = "Run complete" if succeeded else "Run failed"
    message = log_entry.prompt_preview

    if not succeeded and is_meaningful_error(log_entry.error or ""):
        message = log_entry.error or ""
    if not message.strip():
        message = "Run finished." if succeeded else "Run failed."

    message = truncate_notification(message)
    return (
        f'display notification "{escape_applescript(message)}" '
        f'with title "{escape_applescript(NOTIFICATION_TITLE)}" '
        f'subtitle "{escape_applescript(subtitle)}"'
    )


class Notifier:
    """Posts run results through osascript."""

    def notify_run(self, context: ExecutionContext, log_entry: LogEntry) -> None:
        """Best effort: a failed notification is logged and otherwise ignored."""
        script = build_notification_script(log_entry)
        argv = [OSASCRIPT, "-e", script]
        env = None
        if context.crosses_privilege:
            argv = run_as(context, argv)
            env = context.account_env()
        try:
            subprocess.run(
                argv,
                env=env,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                check=False,
            )
        except OSError as exc:
            logger.debug("notification failed: %s", exc)
