"""
Configuration management for pipshell.

Settings come from the environment (optionally seeded from a .env file by
the CLI) and an optional JSON file for package aliases.

Environment:
    PIPSHELL_WORKSPACE_PATH   reuse this workspace and keep it on exit
    PIPSHELL_HISTORY_PATH     history file; empty string disables history
    PIPSHELL_HISTORY_SIZE     maximum history lines (default 1000)
    PIPSHELL_INSTALLER        "pip" (default) or "uv"
    PIPSHELL_INSTALL_TIMEOUT  seconds before an install is abandoned
"""

from __future__ import annotations

import json
import os
import sys
import time
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

from .history import DEFAULT_HISTORY_SIZE

WORKSPACE_PATH_ENV = "PIPSHELL_WORKSPACE_PATH"
HISTORY_PATH_ENV = "PIPSHELL_HISTORY_PATH"
HISTORY_SIZE_ENV = "PIPSHELL_HISTORY_SIZE"
INSTALLER_ENV = "PIPSHELL_INSTALLER"
INSTALL_TIMEOUT_ENV = "PIPSHELL_INSTALL_TIMEOUT"

STATE_DIR_NAME = ".pipshell"
HISTORY_FILE_NAME = ".pipshell_history"
CONFIG_PATH = Path.home() / STATE_DIR_NAME / "config.json"

MIN_PYTHON = (3, 10)


def check_python_version(version_info: tuple[int, ...] | None = None) -> bool:
    """Check whether the running interpreter is new enough."""
    current = tuple(version_info or sys.version_info)[:2]
    return current >= MIN_PYTHON


def ephemeral_workspace_path(home: Path) -> Path:
    """Unique per-session workspace location under the user's home directory."""
    return home / STATE_DIR_NAME / f"workspace_{os.getpid()}_{int(time.time() * 1000)}"


def history_path_from_env(environ: Mapping[str, str], home: Path) -> Path | None:
    """
    Resolve the history file location.

    Returns:
        None when history is disabled (variable set to the empty string),
        the configured path when set, else the default under home.
    """
    value = environ.get(HISTORY_PATH_ENV)
    if value is None:
        return home / HISTORY_FILE_NAME
    if value == "":
        return None
    return Path(value).expanduser()


def history_size_from_env(environ: Mapping[str, str]) -> int:
    """Positive integer from the environment, else the default size."""
    try:
        size = int(environ.get(HISTORY_SIZE_ENV, ""))
    except ValueError:
        return DEFAULT_HISTORY_SIZE
    return size if size > 0 else DEFAULT_HISTORY_SIZE


def install_timeout_from_env(environ: Mapping[str, str]) -> float | None:
    try:
        timeout = float(environ.get(INSTALL_TIMEOUT_ENV, ""))
    except ValueError:
        return None
    return timeout if timeout > 0 else None


def load_package_aliases(path: Path | None = None) -> dict[str, str]:
    """
    Load user import name -> distribution mappings.

    Args:
        path: Optional config file path. Defaults to ~/.pipshell/config.json

    Returns:
        Mapping from the file's "package_aliases" key, or {} when the file
        is missing or unreadable
    """
    if path is None:
        path = CONFIG_PATH

    if not path.exists():
        return {}

    try:
        data = json.loads(path.read_text())
    except (json.JSONDecodeError, OSError):
        # Use defaults on error
        return {}

    aliases = data.get("package_aliases", {}) if isinstance(data, dict) else {}
    if not isinstance(aliases, dict):
        return {}
    return {str(k): str(v) for k, v in aliases.items()}


@dataclass
class SessionConfig:
    """
    Configuration for one interactive session.

    persist_workspace is derived from whether a workspace path was given:
    a given workspace is reused and kept; a generated one is destroyed.
    """

    workspace_path: Path
    persist_workspace: bool = False
    home_dir: Path = field(default_factory=Path.home)
    history_path: Path | None = None
    history_size: int = DEFAULT_HISTORY_SIZE
    installer: str = "pip"
    install_timeout: float | None = None
    package_aliases: dict[str, str] = field(default_factory=dict)

    @property
    def history_enabled(self) -> bool:
        return self.history_path is not None

    @classmethod
    def from_env(
        cls,
        environ: Mapping[str, str] | None = None,
        home: Path | None = None,
        config_path: Path | None = None,
    ) -> "SessionConfig":
        """
        Build configuration from environment variables.

        Args:
            environ: Environment mapping (default: os.environ)
            home: Home directory (default: Path.home())
            config_path: Alias config file (default: ~/.pipshell/config.json)
        """
        environ = os.environ if environ is None else environ
        home = home or Path.home()

        workspace = environ.get(WORKSPACE_PATH_ENV)
        if workspace:
            workspace_path = Path(workspace).expanduser()
            persist = True
        else:
            workspace_path = ephemeral_workspace_path(home)
            persist = False

        return cls(
            workspace_path=workspace_path,
            persist_workspace=persist,
            home_dir=home,
            history_path=history_path_from_env(environ, home),
            history_size=history_size_from_env(environ),
            installer=environ.get(INSTALLER_ENV) or "pip",
            install_timeout=install_timeout_from_env(environ),
            package_aliases=load_package_aliases(
                config_path if config_path is not None else home / STATE_DIR_NAME / "config.json"
            ),
        )

