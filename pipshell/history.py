"""
Session history persistence.

Keeps the accepted input lines of a session in memory and mirrors them to
a history file. Every accepted line rewrites the whole file atomically
(write-to-temp-then-rename), so a reader never sees a half-written file and
a lost write never corrupts earlier lines. History is a side channel: read
and write failures are logged and discarded, never raised.
"""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path

from .schema import BestEffort

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_SIZE = 1000


class HistoryManager:
    """
    Ordered record of accepted input lines, oldest first, backed by a file.

    Usage:
        history = HistoryManager(Path("~/.pipshell_history").expanduser())
        history.load()
        history.on_line_accepted("import requests")
    """

    def __init__(self, path: Path | str, size: int = DEFAULT_HISTORY_SIZE):
        """
        Initialize history manager.

        Args:
            path: History file location
            size: Maximum number of lines kept (non-positive: default)
        """
        self.path = Path(path)
        self.size = size if size > 0 else DEFAULT_HISTORY_SIZE
        self._entries: list[str] = []

    @property
    def entries(self) -> list[str]:
        """Copy of the in-memory history, oldest first."""
        return list(self._entries)

    def load(self, path: Path | str | None = None) -> list[str]:
        """
        Read history from disk.

        Lines are trimmed and blank lines dropped, in file order. Any read
        failure yields an empty history.

        Args:
            path: File to read (default: the manager's path)

        Returns:
            The loaded lines
        """
        source = Path(path) if path is not None else self.path
        try:
            text = source.read_text()
        except (OSError, UnicodeDecodeError) as e:
            logger.debug("No history loaded from %s: %s", source, e)
            lines: list[str] = []
        else:
            lines = [line.strip() for line in text.splitlines() if line.strip()]

        self._entries = lines[-self.size:]
        return list(self._entries)

    def on_line_accepted(self, line: str) -> BestEffort:
        """
        Record an accepted input line and rewrite the history file.

        Blank lines are not recorded and do not touch the file.
        """
        entry = line.strip()
        if not entry:
            return BestEffort()

        self._entries.append(entry)
        if len(self._entries) > self.size:
            del self._entries[: len(self._entries) - self.size]
        return self.save()

    def save(self) -> BestEffort:
        """Rewrite the full history file from memory."""
        try:
            self._write(self.path, "\n".join(self._entries) + "\n")
        except OSError as e:
            logger.debug("Discarding history write failure for %s: %s", self.path, e)
            return BestEffort.failed(e)
        return BestEffort()

    @staticmethod
    def _write(target: Path, content: str) -> None:
        target.parent.mkdir(parents=True, exist_ok=True)
        fd, temp_path = tempfile.mkstemp(suffix=".tmp", prefix=f"{target.name}_", dir=target.parent)
        try:
            with os.fdopen(fd, "w") as f:
                f.write(content)
            os.replace(temp_path, target)
        except Exception:
            try:
                os.unlink(temp_path)
            except OSError:
                pass
            raise
