"""Logging setup and structured Logfire events for schedule runs.

Runs are fired by launchd with stderr pointed at the schedule's daemon
error log, so plain ``logging`` output lands there. Structured events go to
Logfire, which only ships them when a token is configured.

The ``log_*`` helpers never raise: observability must not fail a run.
"""

import logging
import sys
from typing import Any, Optional

import logfire

logger = logging.getLogger(__name__)

SERVICE_NAME = "wake-puppy"

_configured = False


def configure_observability(verbose: bool = False) -> None:
    """Configure stdlib logging and Logfire once per process."""
    global _configured
    if _configured:
        return

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )
    try:
        logfire.configure(
            service_name=SERVICE_NAME,
            send_to_logfire="if-token-present",
            console=False,
            inspect_arguments=False,
        )
    except Exception as e:
        logger.debug(f"Logfire configuration failed: {e}")
    _configured = True


# =============================================================================
# RUN LOGGING
# =============================================================================


def log_run_started(schedule_id: str, schedule_type: str, **extra_fields: Any) -> None:
    """Log the start of one execution attempt."""
    try:
        logfire.info(
            "Schedule run started: {schedule_id} ({schedule_type})",
            schedule_id=schedule_id,
            schedule_type=schedule_type,
            **extra_fields,
        )
    except Exception as e:
        logger.debug(f"Failed to log run start: {e}")


def log_run_finished(
    schedule_id: str,
    status: str,
    exit_code: int,
    error: Optional[str] = None,
    **extra_fields: Any,
) -> None:
    """Log the outcome of one execution attempt; failures log as warnings."""
    try:
        if status == "success":
            logfire.info(
                "Schedule run finished: {schedule_id} → {status}",
                schedule_id=schedule_id,
                status=status,
                exit_code=exit_code,
                **extra_fields,
            )
        else:
            logfire.warn(
                "Schedule run failed: {schedule_id} (exit {exit_code}): {error}",
                schedule_id=schedule_id,
                status=status,
                exit_code=exit_code,
                error=error or "",
                **extra_fields,
            )
    except Exception as e:
        logger.debug(f"Failed to log run result: {e}")


# =============================================================================
# SCHEDULE LIFECYCLE LOGGING
# =============================================================================


def log_schedule_event(event: str, schedule_id: str, **extra_fields: Any) -> None:
    """Log a create/update/delete/retire/rearm event for a schedule."""
    try:
        logfire.info(
            "Schedule {event}: {schedule_id}",
            event=event,
            schedule_id=schedule_id,
            **extra_fields,
        )
    except Exception as e:
        logger.debug(f"Failed to log schedule event: {e}")
