"""Path helpers shared by the store, the executor and the transcript reader."""

import os
from pathlib import Path
from typing import Optional

from wake_puppy.settings import SchedulerSettings, get_settings


def expand_home(path: str, home: Optional[str] = None) -> str:
    """Expand a leading ``~`` using ``home`` (or the current user's home)."""
    if not path:
        return ""
    if path == "~" or path.startswith("~/"):
        base = home or os.path.expanduser("~")
        if path == "~":
            return base
        return os.path.join(base, path[2:])
    return path


def normalize_path(path: str, home: Optional[str] = None) -> str:
    """Return an absolute, cleaned version of ``path``.

    Raises:
        ValueError: if ``path`` is empty.
    """
    expanded = expand_home(path, home)
    if not expanded:
        raise ValueError("path is required")
    return os.path.normpath(os.path.abspath(expanded))


def humanize_path(path: str, home: Optional[str] = None) -> str:
    """Render ``path`` relative to the home directory as ``~/...`` when possible."""
    home = home or os.path.expanduser("~")
    if not home:
        return path
    clean = os.path.normpath(path)
    home = os.path.normpath(home)
    if clean == home:
        return "~"
    if clean.startswith(home + os.sep):
        return os.path.join("~", os.path.relpath(clean, home))
    return clean


def projects_root(home: Optional[str] = None) -> Path:
    """Directory holding one transcript folder per project (``~/.claude/projects``)."""
    base = Path(home) if home else Path.home()
    return base / ".claude" / "projects"


def project_dir_name(path: str) -> str:
    """Name of the transcript folder for a project path (separators become ``-``)."""
    return normalize_path(path).replace(os.sep, "-")


def support_dir(
    home: Optional[str] = None, settings: Optional[SchedulerSettings] = None
) -> Path:
    """Store root for the account whose home directory is ``home``."""
    settings = settings or get_settings()
    return settings.support_dir(home)


def is_internal_path(
    path: str,
    home: Optional[str] = None,
    settings: Optional[SchedulerSettings] = None,
) -> bool:
    """True when ``path`` is the store root or nested inside it."""
    if not path or not path.strip():
        return False
    settings = settings or get_settings()
    try:
        base = normalize_path(str(support_dir(home, settings)))
        candidate = normalize_path(path, home)
    except ValueError:
        return False
    return candidate == base or candidate.startswith(base + os.sep)
