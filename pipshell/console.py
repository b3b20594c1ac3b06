"""
Interactive console front-end.

Wraps the standard ``code`` module so every accepted input line reaches
the session history, and a failed statement only aborts that statement.
"""

from __future__ import annotations

import code
import logging
import sys
import traceback

from .history import HistoryManager
from .session import Session

try:
    import readline
except ImportError:  # Windows without pyreadline
    readline = None

logger = logging.getLogger(__name__)

BANNER = (
    "pipshell {version} on Python {python}\n"
    "Missing packages are installed on first import. Workspace: {workspace}\n"
    "Type Ctrl-D to exit."
)


class PipshellConsole(code.InteractiveConsole):
    """InteractiveConsole that reports accepted lines to a history manager."""

    def __init__(self, session: Session, filename: str = "<console>"):
        super().__init__(locals=session.namespace(), filename=filename)
        self.session = session
        self.history: HistoryManager | None = session.history

    def push(self, line, *args, **kwargs):
        if self.history is not None:
            self.history.on_line_accepted(line)
        return super().push(line, *args, **kwargs)


def seed_readline(history: HistoryManager) -> None:
    """Make loaded history available to line editing."""
    if readline is None:
        logger.debug("readline unavailable, line editing starts without history")
        return
    readline.clear_history()
    readline.set_history_length(history.size)
    for entry in history.entries:
        readline.add_history(entry)


def run_console(session: Session, banner: str | None = None) -> None:
    """Run the interactive loop until end of input."""
    from . import __version__

    if session.history is not None:
        seed_readline(session.history)

    console = PipshellConsole(session)
    if banner is None:
        banner = BANNER.format(
            version=__version__,
            python=sys.version.split()[0],
            workspace=session.workspace.path,
        )
    console.interact(banner=banner, exitmsg="")


def run_source(session: Session, source: str, filename: str = "<string>") -> int:
    """
    Execute a block of source in the session namespace.

    Returns:
        0 on success, 1 if the code raised
    """
    namespace = session.namespace()
    try:
        exec(compile(source, filename, "exec"), namespace)
    except SystemExit as e:
        return e.code if isinstance(e.code, int) else (0 if e.code is None else 1)
    except Exception:
        traceback.print_exc()
        return 1
    return 0
