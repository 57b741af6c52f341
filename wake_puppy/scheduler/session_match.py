"""Finding the transcript a fresh-session run just created.

A new-session run doesn't report its session id, so after it succeeds we
look for a recently modified transcript whose first user message matches
the submitted prompt. It's a heuristic: concurrent sessions or a prompt
that isn't echoed verbatim at the start of the transcript go unmatched.
"""

import logging
import os
from datetime import datetime, timedelta
from typing import Optional

from wake_puppy.paths import normalize_path, projects_root
from wake_puppy.scheduler.context import ExecutionContext, chown_quietly
from wake_puppy.scheduler.types import ScheduleEntry
from wake_puppy.sessions import collect_sessions, extract_cwd, extract_first_user_text
from wake_puppy.settings import SchedulerSettings, get_settings

logger = logging.getLogger(__name__)

PROMPT_MATCH_CHARS = 200
PROJECT_PROBE_SESSIONS = 5


def normalize_prompt_text(text: str) -> str:
    return " ".join((text or "").split())[:PROMPT_MATCH_CHARS]


def prompt_matches_text(prompt: str, text: str) -> bool:
    """Case-insensitive prefix match in either direction."""
    p = normalize_prompt_text(prompt).lower()
    t = normalize_prompt_text(text).lower()
    if not p or not t:
        return False
    return p.startswith(t) or t.startswith(p)


def find_project_dir(
    entry: ScheduleEntry, settings: Optional[SchedulerSettings] = None
) -> Optional[str]:
    """Transcript folder whose recent sessions ran in the schedule's project."""
    if not entry.project_path:
        return None
    try:
        wanted = normalize_path(entry.project_path, entry.home_dir or None)
    except ValueError:
        return None

    root = projects_root(entry.home_dir or None)
    try:
        children = sorted(os.scandir(root), key=lambda e: e.name)
    except OSError:
        return None

    for child in children:
        if not child.is_dir():
            continue
        try:
            sessions = collect_sessions(child.path)
        except OSError:
            continue
        for session in sessions[:PROJECT_PROBE_SESSIONS]:
            try:
                cwd = extract_cwd(session.path)
            except OSError:
                continue
            if cwd and _same_path(cwd, wanted):
                return child.path
    return None


def _same_path(path: str, wanted: str) -> bool:
    try:
        return normalize_path(path) == wanted
    except ValueError:
        return False


def find_new_session(
    context: ExecutionContext,
    entry: ScheduleEntry,
    since: datetime,
    now: Optional[datetime] = None,
    settings: Optional[SchedulerSettings] = None,
) -> Optional[str]:
    """Id of the session a run started at ``since`` created, or None."""
    settings = settings or get_settings()
    if not entry.prompt.strip():
        return None
    project_dir = find_project_dir(entry, settings)
    if not project_dir:
        return None
    try:
        sessions = collect_sessions(project_dir)
    except OSError:
        return None

    now = now or datetime.now().astimezone()
    cutoff = since - timedelta(seconds=settings.session_match_window_seconds)
    for session in sessions:
        # Newest first, so nothing older can match past this point.
        if session.mod_time < cutoff:
            break
        if session.mod_time > now:
            continue
        try:
            text = extract_first_user_text(session.path)
        except OSError:
            continue
        if not prompt_matches_text(entry.prompt, text):
            continue
        if context.crosses_privilege:
            chown_quietly(session.path, entry.uid, entry.gid)
        logger.debug("Matched new session %s for schedule %s", session.id, entry.id)
        return session.id
    return None
