"""
Interactive session lifecycle.

A Session ties one workspace, one installer bridge, one load interceptor
and (optionally) one history file together for the lifetime of a console:

    start()  -> switch to the workspace, hook imports, load history
    close()  -> unhook, then destroy the workspace unless it is persistent
"""

from __future__ import annotations

import atexit
import logging
import os
import warnings
from types import ModuleType
from typing import Any

from .config import WORKSPACE_PATH_ENV, SessionConfig
from .history import HistoryManager
from .installer import InstallerBackend, InstallerBridge, project_initializer_for
from .interceptor import LoadInterceptor, install_hook, uninstall_hook
from .workspace import WorkspaceManager

logger = logging.getLogger(__name__)


class Session:
    """
    One interactive session with on-demand package installation.

    Usage:
        session = Session(SessionConfig.from_env())
        session.start()
        namespace = session.namespace()
        ...
        session.close()
    """

    def __init__(
        self,
        config: SessionConfig,
        installer: InstallerBridge | None = None,
        export_environment: bool = True,
    ):
        """
        Initialize session.

        Args:
            config: Session configuration
            installer: Installer bridge (default: built from config)
            export_environment: Export an ephemeral workspace path to
                os.environ so child processes reuse it
        """
        self.config = config
        if installer is None:
            backend = InstallerBackend(config.installer)
            workspace = WorkspaceManager(
                config.workspace_path,
                persistent=config.persist_workspace,
                project_initializer=project_initializer_for(backend),
            )
            installer = InstallerBridge(
                workspace,
                backend=backend,
                timeout=config.install_timeout,
                aliases=config.package_aliases,
            )
        self.installer = installer
        self.workspace = installer.workspace
        self.interceptor = LoadInterceptor(self.workspace, self.installer)
        self.history: HistoryManager | None = None
        self._export_environment = export_environment
        self._started = False
        self._closed = False
        self._env_exported = False
        self._previous_env: str | None = None

    @property
    def started(self) -> bool:
        return self._started and not self._closed

    def start(self) -> "Session":
        """Prepare the workspace and hook the import system."""
        if self.started:
            return self

        # Registered first so a failed start still cleans up
        atexit.register(self.close)
        self._started = True
        self._closed = False

        self.workspace.switch_to(clean_up_first=not self.workspace.persistent)
        self.workspace.register_search_path()
        install_hook(self.interceptor)

        if self._export_environment and not self.workspace.persistent:
            self._previous_env = os.environ.get(WORKSPACE_PATH_ENV)
            self._env_exported = True
            os.environ[WORKSPACE_PATH_ENV] = str(self.workspace.path)

        if self.config.history_path is not None:
            self.history = HistoryManager(self.config.history_path, self.config.history_size)
            self.history.load()

        return self

    def close(self) -> None:
        """Unhook imports and clean up. Safe to call more than once."""
        if not self._started or self._closed:
            return
        self._closed = True
        atexit.unregister(self.close)

        uninstall_hook()
        self.workspace.unregister_search_path()
        self._restore_environment()

        if self.workspace.persistent:
            logger.info("Workspace %s preserved!", self.workspace.path)
        else:
            logger.info("Cleaning up workspace...")
            self.workspace.destroy_quietly()

    def _restore_environment(self) -> None:
        if not self._env_exported:
            return
        if self._previous_env is None:
            os.environ.pop(WORKSPACE_PATH_ENV, None)
        else:
            os.environ[WORKSPACE_PATH_ENV] = self._previous_env
        self._env_exported = False

    def require(self, reference: str, issuing_file: str | None = None) -> ModuleType:
        """Load a module by reference, installing its package on demand."""
        return self.interceptor.resolve(reference, issuing_file)

    def load(self, reference: str) -> ModuleType:
        """
        Load a module, installing it first if needed.

        Deprecated: plain ``import`` statements and ``require()`` install
        missing packages on their own.
        """
        warnings.warn(
            "use of 'load()' is deprecated! You can now use 'import' or 'require()' directly.",
            DeprecationWarning,
            stacklevel=2,
        )
        return self.require(reference)

    def namespace(self) -> dict[str, Any]:
        """Globals for code evaluated in this session."""
        return {
            "__name__": "__console__",
            "__doc__": None,
            "require": self.require,
            "load": self.load,
        }

    def __enter__(self) -> "Session":
        return self.start()

    def __exit__(self, *exc_info: Any) -> None:
        self.close()
