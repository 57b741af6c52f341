"""Command line entry point for wake-puppy.

``wake-puppy --run <id>`` is what each launchd job invokes; the
subcommands manage schedules by hand.
"""

import argparse
import sys
import traceback
from typing import List, Optional

from wake_puppy import __version__
from wake_puppy.observability import configure_observability
from wake_puppy.scheduler import cli
from wake_puppy.scheduler.manager import ScheduleDraft
from wake_puppy.scheduler.types import WEEKDAYS, ScheduleType

SCHEDULE_TYPES = [t.value for t in ScheduleType]


def _add_schedule_options(parser: argparse.ArgumentParser, required: bool) -> None:
    parser.add_argument("--prompt", "-p", required=required, help="Prompt to run")
    parser.add_argument(
        "--type",
        dest="schedule_type",
        choices=SCHEDULE_TYPES,
        required=required,
        help="Recurrence kind",
    )
    parser.add_argument("--time", "-t", required=required, help="24-hour HH:MM")
    parser.add_argument("--date", help="YYYY-MM-DD (once schedules)")
    parser.add_argument(
        "--weekday", choices=WEEKDAYS, type=str.lower, help="Day of week (weekly schedules)"
    )
    parser.add_argument("--timezone", help="IANA zone name (default: local)")
    parser.add_argument("--project", dest="project_path", help="Project directory")
    parser.add_argument("--session", dest="session_id", help="Session id to resume")
    parser.add_argument("--model", "-m", help="Model name, or 'auto'")
    parser.add_argument("--permission-mode", help="Permission mode, e.g. acceptEdits")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="wake-puppy",
        description="Wake Puppy - run prompts unattended at a scheduled time",
    )
    parser.add_argument(
        "--version",
        "-V",
        action="version",
        version=f"{__version__}",
        help="Show version and exit",
    )
    parser.add_argument(
        "--run", metavar="ID", help="Run a scheduled job by id (used by launchd)"
    )
    parser.add_argument(
        "--verbose", "-v", action="store_true", help="Enable debug logging"
    )

    sub = parser.add_subparsers(dest="command")
    sub.add_parser("list", help="List schedules")

    logs = sub.add_parser("logs", help="Show run history")
    logs.add_argument("--limit", "-n", type=int, default=0, help="Show at most N runs")

    add = sub.add_parser("add", help="Create a schedule")
    _add_schedule_options(add, required=True)

    edit = sub.add_parser("edit", help="Change a schedule")
    edit.add_argument("id", help="Schedule id")
    _add_schedule_options(edit, required=False)
    edit.add_argument(
        "--new-session",
        action="store_true",
        default=None,
        help="Start a fresh session instead of resuming",
    )

    delete = sub.add_parser("delete", help="Delete a schedule")
    delete.add_argument("id", help="Schedule id")

    sub.add_parser("prune", help="Apply log retention now")

    sessions = sub.add_parser("sessions", help="List sessions of a project")
    sessions.add_argument("path", help="Project directory or its transcript folder")

    sub.add_parser("token", help="Store a setup token read from stdin")
    return parser


def _draft_from_args(args: argparse.Namespace) -> ScheduleDraft:
    return ScheduleDraft(
        prompt=args.prompt,
        schedule_type=args.schedule_type,
        time=args.time,
        project_path=args.project_path or "",
        session_id=args.session_id,
        new_session=not args.session_id,
        model=args.model or "",
        permission_mode=args.permission_mode or "",
        date=args.date,
        weekday=args.weekday,
        timezone=args.timezone or "",
    )


def _changes_from_args(args: argparse.Namespace) -> dict:
    changes = {
        "prompt": args.prompt,
        "schedule_type": args.schedule_type,
        "time": args.time,
        "date": args.date,
        "weekday": args.weekday,
        "timezone": args.timezone,
        "project_path": args.project_path,
        "session_id": args.session_id,
        "model": args.model,
        "permission_mode": args.permission_mode,
    }
    if args.session_id:
        changes["new_session"] = False
    elif args.new_session:
        changes["new_session"] = True
        changes["session_id"] = None
    return changes


def main(argv: Optional[List[str]] = None) -> int:
    """Parse arguments, dispatch to a handler and return the exit code."""
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_observability(args.verbose)

    if args.run:
        if args.command:
            parser.error("--run does not take a subcommand")
        return 0 if cli.handle_run(args.run) else 1

    if args.command == "list":
        ok = cli.handle_list()
    elif args.command == "logs":
        ok = cli.handle_logs(args.limit)
    elif args.command == "add":
        ok = cli.handle_add(_draft_from_args(args))
    elif args.command == "edit":
        ok = cli.handle_edit(args.id, _changes_from_args(args))
    elif args.command == "delete":
        ok = cli.handle_delete(args.id)
    elif args.command == "prune":
        ok = cli.handle_prune()
    elif args.command == "sessions":
        ok = cli.handle_sessions(args.path)
    elif args.command == "token":
        ok = cli.handle_token()
    else:
        parser.print_help()
        return 2
    return 0 if ok else 1


def main_entry():
    """Entry point for the installed CLI tool."""
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        sys.stderr.write(traceback.format_exc())
        sys.exit(130)
