"""Reading the scheduled program's session transcripts.

Each project has a folder under ``~/.claude/projects`` holding one
``<uuid>.jsonl`` transcript per session. Records are JSON objects, one per
line; the ones used here look like::

    {"type": "summary", "summary": "..."}
    {"type": "user", "cwd": "/path", "message": {"role": "user", "content": ...}}

``content`` is either a string, a list of parts (``{"type": "text",
"text": ...}``) or a single part.
"""

import json
import logging
import os
import re
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Iterator, List, Optional

from wake_puppy.paths import normalize_path
from wake_puppy.scheduler.timeutil import relative_time

logger = logging.getLogger(__name__)

PREVIEW_MAX_CHARS = 140
MAX_CWD_LINES = 200
MAX_PREVIEW_LINES = 400

_UUID_RE = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE
)


@dataclass
class Session:
    id: str
    path: str
    mod_time: datetime
    rel_time: str = ""
    preview: str = ""


def is_uuid(value: str) -> bool:
    return bool(_UUID_RE.match(value or ""))


def collect_sessions(project_dir: str) -> List[Session]:
    """UUID-named transcripts in ``project_dir``, newest first.

    Raises:
        FileNotFoundError: if the directory doesn't exist.
        NotADirectoryError: if it isn't a directory.
    """
    project_dir = normalize_path(project_dir)
    if not os.path.exists(project_dir):
        raise FileNotFoundError(f"project path not found: {project_dir}")
    if not os.path.isdir(project_dir):
        raise NotADirectoryError(f"project path is not a directory: {project_dir}")

    sessions = []
    with os.scandir(project_dir) as entries:
        for entry in entries:
            name = entry.name
            if not name.lower().endswith(".jsonl"):
                continue
            session_id = name[: -len(".jsonl")]
            if not is_uuid(session_id):
                continue
            try:
                if entry.is_dir():
                    continue
                mtime = entry.stat().st_mtime
            except OSError:
                continue
            sessions.append(
                Session(
                    id=session_id,
                    path=os.path.join(project_dir, name),
                    mod_time=datetime.fromtimestamp(mtime).astimezone(),
                )
            )

    # Newest first; ties broken by id for a stable order.
    sessions.sort(key=lambda s: s.id)
    sessions.sort(key=lambda s: s.mod_time, reverse=True)
    for session in sessions:
        session.rel_time = relative_time(session.mod_time)
    return sessions


def list_sessions(project_dir: str) -> List[Session]:
    """Like ``collect_sessions`` with previews filled in."""
    sessions = collect_sessions(project_dir)
    fill_previews(sessions)
    return sessions


def fill_previews(sessions: List[Session]) -> None:
    """Extract every preview on a small worker pool.

    A transcript that can't be read gets an empty preview; the pool is
    always drained before returning.
    """
    if not sessions:
        return
    workers = min(max(os.cpu_count() or 1, 2), 4)
    with ThreadPoolExecutor(max_workers=workers) as pool:
        previews = list(pool.map(_safe_preview, [s.path for s in sessions]))
    for session, preview in zip(sessions, previews):
        session.preview = preview


def _safe_preview(path: str) -> str:
    try:
        return extract_preview(path)
    except OSError as exc:
        logger.debug("preview of %s failed: %s", path, exc)
        return ""


def _records(path: str) -> Iterator[Dict[str, Any]]:
    """Parsed JSON objects of a transcript; blank and malformed lines skipped."""
    with open(path, "r", encoding="utf-8", errors="replace") as f:
        for line in f:
            line = line.strip()
            if not line:
                continue
            try:
                record = json.loads(line)
            except ValueError:
                continue
            if isinstance(record, dict):
                yield record


def extract_cwd(path: str) -> str:
    """First ``cwd`` recorded in the transcript, or ``""``."""
    for lines, record in enumerate(_records(path), start=1):
        cwd = record.get("cwd")
        if isinstance(cwd, str) and cwd:
            return cwd
        if lines >= MAX_CWD_LINES:
            break
    return ""


def _message(record: Dict[str, Any]) -> Dict[str, Any]:
    message = record.get("message")
    return message if isinstance(message, dict) else {}


def _has_role(record: Dict[str, Any], role: str) -> bool:
    return record.get("type") == role or _message(record).get("role") == role


def _text_item(value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, dict):
        kind = value.get("type")
        if isinstance(kind, str) and kind and kind != "text":
            return ""
        text = value.get("text")
        if isinstance(text, str):
            return text
    return ""


def content_text(content: Any) -> str:
    """First text fragment of a message's ``content``."""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        for item in content:
            text = _text_item(item)
            if text:
                return text
        return ""
    if isinstance(content, dict):
        return _text_item(content)
    return ""


def normalize_whitespace(text: str) -> str:
    return " ".join(text.split())


def truncate(text: str, max_chars: int) -> str:
    if len(text) <= max_chars:
        return text
    if max_chars <= 3:
        return text[:max_chars]
    return text[: max_chars - 3] + "..."


def extract_first_user_text(path: str) -> str:
    """Whitespace-normalized text of the first user message, or ``""``."""
    for lines, record in enumerate(_records(path), start=1):
        if _has_role(record, "user"):
            text = content_text(_message(record).get("content"))
            if text:
                return normalize_whitespace(text)
        if lines >= MAX_PREVIEW_LINES:
            break
    return ""


def extract_preview(path: str) -> str:
    """One-line description: the summary, else first user, else first assistant text."""
    user_text = ""
    assistant_text = ""
    for lines, record in enumerate(_records(path), start=1):
        summary = record.get("summary")
        if record.get("type") == "summary" and isinstance(summary, str) and summary:
            return _normalize_preview(summary)
        if not user_text and _has_role(record, "user"):
            user_text = content_text(_message(record).get("content"))
        if not assistant_text and _has_role(record, "assistant"):
            assistant_text = content_text(_message(record).get("content"))
        if lines >= MAX_PREVIEW_LINES:
            break
    return _normalize_preview(user_text or assistant_text)


def _normalize_preview(text: str) -> str:
    text = normalize_whitespace(text or "")
    return truncate(text, PREVIEW_MAX_CHARS) if text else ""


def find_session(project_dir: str, session_id: str) -> Optional[Session]:
    """The session with ``session_id`` in ``project_dir``, if present."""
    for session in collect_sessions(project_dir):
        if session.id == session_id:
            return session
    return None
