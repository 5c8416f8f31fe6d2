"""File-based agent memory: a long-term notes file plus dated daily notes."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timedelta
from pathlib import Path

import structlog

SECTION_SEPARATOR = "\n\n---\n\n"

logger = structlog.get_logger("clawcore.context.memory")


class MemoryStore:
    """
    Plain-markdown memory living inside the workspace.

    Layout::

        <workspace>/memory/MEMORY.md             long-term memory
        <workspace>/memory/YYYYMM/YYYYMMDD.md    one file per day

    The agent edits these files through its own tools; this class only reads
    them for the system prompt and offers simple write helpers.
    """

    def __init__(
        self,
        workspace: str | Path,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._memory_dir = Path(workspace).expanduser() / "memory"
        self._clock = clock
        self._logger = logger

    @property
    def memory_dir(self) -> Path:
        return self._memory_dir

    @property
    def long_term_file(self) -> Path:
        return self._memory_dir / "MEMORY.md"

    def daily_file(self, day: datetime) -> Path:
        return self._memory_dir / day.strftime("%Y%m") / f"{day.strftime('%Y%m%d')}.md"

    def read_long_term(self) -> str:
        return _read_or_empty(self.long_term_file)

    def write_long_term(self, content: str) -> None:
        self._memory_dir.mkdir(parents=True, exist_ok=True)
        self.long_term_file.write_text(content, encoding="utf-8")

    def read_today(self) -> str:
        return _read_or_empty(self.daily_file(self._clock()))

    def append_today(self, content: str) -> None:
        """
        Append a note to today's file.

        A new file starts with a ``# YYYY-MM-DD`` heading; existing files get
        the content appended on a new line.
        """
        today = self._clock()
        path = self.daily_file(today)
        path.parent.mkdir(parents=True, exist_ok=True)
        if path.exists():
            existing = path.read_text(encoding="utf-8")
            path.write_text(existing + "\n" + content, encoding="utf-8")
        else:
            path.write_text(f"# {today.strftime('%Y-%m-%d')}\n\n{content}", encoding="utf-8")
        self._logger.debug("daily_note_appended", path=str(path), chars=len(content))

    def recent_daily_notes(self, days: int) -> str:
        """Return the last ``days`` daily notes, newest first, joined by separators."""
        today = self._clock()
        notes: list[str] = []
        for offset in range(days):
            content = _read_or_empty(self.daily_file(today - timedelta(days=offset)))
            if content:
                notes.append(content)
        return SECTION_SEPARATOR.join(notes)

    def memory_context(self, days: int = 3) -> str:
        """
        Render long-term memory and recent daily notes for the system prompt.

        Returns:
            The rendered sections, or ``""`` when there is no memory at all.
        """
        parts: list[str] = []
        long_term = self.read_long_term()
        if long_term:
            parts.append("## Long-term Memory\n\n" + long_term)
        recent = self.recent_daily_notes(days) if days > 0 else ""
        if recent:
            parts.append("## Recent Daily Notes\n\n" + recent)
        return SECTION_SEPARATOR.join(parts)


def read_optional(path: Path) -> str | None:
    """
    Read an optional workspace file as UTF-8.

    Returns None when the file is missing. Files that cannot be read or
    decoded are logged and also treated as missing.
    """
    try:
        return path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return None
    except (OSError, UnicodeDecodeError) as exc:
        logger.warning("workspace_file_unreadable", path=str(path), error=str(exc))
        return None


def _read_or_empty(path: Path) -> str:
    return read_optional(path) or ""
