"""CLI entry point for pipshell.

Usage:
    pipshell                         start an interactive session
    pipshell --workspace ~/scratch   reuse (and keep) a workspace
    pipshell -c "import requests; print(requests.__version__)"
"""

from __future__ import annotations

import argparse
import logging
import sys
import warnings
from pathlib import Path

from dotenv import find_dotenv, load_dotenv

from . import __version__
from .config import MIN_PYTHON, SessionConfig, check_python_version
from .console import run_console, run_source
from .session import Session

logger = logging.getLogger("pipshell")

# The deprecated load() helper warns from console code
warnings.filterwarnings("default", category=DeprecationWarning, module="__console__")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pipshell",
        description="Interactive Python session that installs missing packages on first import.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "--workspace",
        type=Path,
        help="Workspace directory to reuse; it is kept on exit",
    )
    parser.add_argument(
        "--no-history",
        action="store_true",
        help="Do not read or write the history file",
    )
    parser.add_argument(
        "--installer",
        choices=["pip", "uv"],
        help="Installer used for missing packages (default: pip)",
    )
    parser.add_argument("-c", dest="command", help="Run code in a session and exit")
    verbosity = parser.add_mutually_exclusive_group()
    verbosity.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    verbosity.add_argument("-q", "--quiet", action="store_true", help="Only log warnings and errors")
    return parser


def configure_logging(verbose: bool = False, quiet: bool = False) -> None:
    level = logging.DEBUG if verbose else logging.WARNING if quiet else logging.INFO
    logging.basicConfig(level=level, format="%(message)s", stream=sys.stderr)


def config_from_args(args: argparse.Namespace) -> SessionConfig:
    """Environment configuration with command line overrides applied."""
    config = SessionConfig.from_env()
    if args.workspace is not None:
        config.workspace_path = args.workspace.expanduser()
        config.persist_workspace = True
    if args.no_history:
        config.history_path = None
    if args.installer:
        config.installer = args.installer
    return config


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.verbose, args.quiet)

    # Existing environment variables win over .env
    load_dotenv(find_dotenv(usecwd=True))

    if not check_python_version():
        logger.warning(
            "pipshell requires Python %s or newer, running %s",
            ".".join(map(str, MIN_PYTHON)),
            sys.version.split()[0],
        )

    session = Session(config_from_args(args))
    try:
        session.start()
        if args.command is not None:
            return run_source(session, args.command)
        run_console(session)
    finally:
        session.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
