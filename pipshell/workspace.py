"""
Workspace manager for pipshell sessions.

A workspace is one session's private project root. Packages installed on
demand land in its dependency cache (``<workspace>/site-packages``), which
is registered on the interpreter search path exactly once.

Layout:
    <workspace>/
        pyproject.toml     project descriptor
        site-packages/     dependency cache (install target)
"""

from __future__ import annotations

import logging
import shutil
import sys
from collections.abc import Callable
from pathlib import Path

from .schema import BestEffort, WorkspaceState, WorkspaceStatus

logger = logging.getLogger(__name__)

PROJECT_DESCRIPTOR = "pyproject.toml"
DEPENDENCY_CACHE = "site-packages"

_DESCRIPTOR_TEMPLATE = """\
[project]
name = "pipshell-workspace"
version = "0.0.0"
description = "Scratch project for an interactive pipshell session"
requires-python = ">={major}.{minor}"
dependencies = []
"""

ProjectInitializer = Callable[[Path], None]


def write_project_descriptor(path: Path) -> None:
    """Write a minimal project descriptor into a workspace directory."""
    descriptor = path / PROJECT_DESCRIPTOR
    descriptor.write_text(
        _DESCRIPTOR_TEMPLATE.format(major=sys.version_info.major, minor=sys.version_info.minor)
    )


class WorkspaceManager:
    """
    Owns a single workspace directory.

    The project initializer is the command that turns an empty directory
    into a project root. It is only run when no descriptor exists yet.
    """

    def __init__(
        self,
        path: Path | str,
        persistent: bool = False,
        project_initializer: ProjectInitializer | None = None,
    ):
        """
        Initialize workspace manager.

        Args:
            path: Workspace directory
            persistent: Keep the directory when the session ends
            project_initializer: Callable run once on an uninitialized
                workspace (default: write pyproject.toml directly)
        """
        self._state = WorkspaceState(path=str(Path(path).expanduser().absolute()), persistent=persistent)
        self.project_initializer = project_initializer or write_project_descriptor

    @property
    def path(self) -> Path:
        return Path(self._state.path)

    @property
    def cache_dir(self) -> Path:
        """Dependency cache directory inside the workspace."""
        return self.path / DEPENDENCY_CACHE

    @property
    def persistent(self) -> bool:
        return self._state.persistent

    @property
    def initialized(self) -> bool:
        return self._state.status == WorkspaceStatus.INITIALIZED

    @property
    def search_paths(self) -> tuple[str, ...]:
        """Entries this workspace has registered on the search path, in order."""
        return tuple(self._state.search_paths)

    @property
    def state(self) -> WorkspaceState:
        return self._state

    def create(self) -> Path:
        """Create the workspace directory tree. No error if it already exists."""
        self.path.mkdir(parents=True, exist_ok=True)
        return self.path

    def initialize_as_project(self) -> None:
        """
        Initialize the workspace as a project root.

        Runs the project initializer only when no descriptor exists, and
        always makes sure the dependency cache directory exists.
        """
        if not (self.path / PROJECT_DESCRIPTOR).exists():
            logger.info("Initializing workspace...")
            self.project_initializer(self.path)
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        self._state.status = WorkspaceStatus.INITIALIZED

    def switch_to(self, path: Path | str | None = None, *, clean_up_first: bool = True) -> Path:
        """
        Make a workspace available, optionally starting from a clean slate.

        A failed clean-up never blocks workspace creation.

        Args:
            path: New workspace directory (default: keep the current one)
            clean_up_first: Destroy any existing workspace at the path first

        Returns:
            The workspace directory
        """
        if path is not None and Path(path).expanduser().absolute() != self.path:
            self.unregister_search_path()
            self._state = WorkspaceState(
                path=str(Path(path).expanduser().absolute()),
                persistent=self._state.persistent,
            )

        if clean_up_first:
            self.destroy_quietly()

        logger.info("Creating workspace...")
        self.create()
        self.initialize_as_project()
        logger.info("Workspace loaded!")
        return self.path

    def destroy(self) -> None:
        """
        Recursively remove the workspace directory.

        Raises:
            OSError: If the directory cannot be removed (including when it
                does not exist)
        """
        shutil.rmtree(self.path)
        self._state.status = WorkspaceStatus.UNINITIALIZED

    def destroy_quietly(self) -> BestEffort:
        """Destroy the workspace, reporting rather than raising failures."""
        try:
            self.destroy()
        except OSError as e:
            logger.debug("Ignoring workspace clean-up failure for %s: %s", self.path, e)
            return BestEffort.failed(e)
        return BestEffort()

    def register_search_path(self, search_path: list[str] | None = None) -> bool:
        """
        Make the dependency cache importable.

        Appends the cache directory to the search path once per workspace;
        calling it again changes nothing.

        Args:
            search_path: Search path to mutate (default: sys.path)

        Returns:
            True if the entry was added by this call
        """
        target = sys.path if search_path is None else search_path
        entry = str(self.cache_dir)
        added = False
        if entry not in target:
            target.append(entry)
            added = True
            logger.debug("Registered %s on the module search path", entry)
        if entry not in self._state.search_paths:
            self._state.search_paths.append(entry)
        return added

    def unregister_search_path(self, search_path: list[str] | None = None) -> None:
        """Remove every entry this workspace registered on the search path."""
        target = sys.path if search_path is None else search_path
        for entry in self._state.search_paths:
            while entry in target:
                target.remove(entry)
        self._state.search_paths.clear()
