"""
Package installer bridge.

Synchronous wrapper around the external package installer, scoped to a
workspace's dependency cache. One call, one subprocess; retry policy
belongs to the load interceptor.

Supports:
- pip (default): ``python -m pip install --target <cache>``
- uv: ``uv pip install --target <cache>``
"""

from __future__ import annotations

import logging
import subprocess
import sys
import time
from collections.abc import Callable
from enum import Enum
from pathlib import Path
from typing import Any

from .classifier import InvalidReference, classify
from .schema import InstallOutcome
from .workspace import ProjectInitializer, WorkspaceManager, write_project_descriptor

logger = logging.getLogger(__name__)


class InstallationFailed(ImportError):
    """The installer exited non-zero, timed out, or could not be started."""

    def __init__(
        self,
        message: str,
        requirement: str | None = None,
        returncode: int | None = None,
        output: str = "",
    ):
        super().__init__(message, name=requirement)
        self.requirement = requirement
        self.returncode = returncode
        self.output = output


class InstallerBackend(Enum):
    """Supported installer command line tools."""

    PIP = "pip"
    UV = "uv"


# Import names whose distribution on the index is named differently
DEFAULT_PACKAGE_ALIASES: dict[str, str] = {
    "yaml": "PyYAML",
    "bs4": "beautifulsoup4",
    "PIL": "Pillow",
    "sklearn": "scikit-learn",
    "cv2": "opencv-python",
    "dateutil": "python-dateutil",
    "dotenv": "python-dotenv",
    "jwt": "PyJWT",
    "magic": "python-magic",
    "serial": "pyserial",
    "usb": "pyusb",
    "docx": "python-docx",
    "pptx": "python-pptx",
    "Crypto": "pycryptodome",
    "OpenSSL": "pyOpenSSL",
    "attr": "attrs",
    "skimage": "scikit-image",
    "fitz": "PyMuPDF",
}

Runner = Callable[..., "subprocess.CompletedProcess[str]"]

WORKSPACE_PROJECT_NAME = "pipshell-workspace"


def install_command(backend: InstallerBackend, requirement: str, target: Path) -> list[str]:
    """Build the installer command line for one requirement."""
    if backend is InstallerBackend.UV:
        return [
            "uv", "pip", "install",
            "--quiet",
            "--python", sys.executable,
            "--target", str(target),
            requirement,
        ]
    return [
        sys.executable, "-m", "pip", "install",
        "--quiet",
        "--disable-pip-version-check",
        "--no-input",
        "--target", str(target),
        requirement,
    ]


def project_initializer_for(backend: InstallerBackend, runner: Runner = subprocess.run) -> ProjectInitializer:
    """
    Get the command that turns a workspace directory into a project root.

    pip has no project command, so the descriptor is written directly.
    """
    if backend is not InstallerBackend.UV:
        return write_project_descriptor

    def _uv_init(path: Path) -> None:
        runner(
            ["uv", "init", "--bare", "--no-workspace", "--name", WORKSPACE_PROJECT_NAME],
            cwd=str(path),
            capture_output=True,
            text=True,
            check=True,
        )

    return _uv_init


class InstallerBridge:
    """
    Installs top-level packages into a workspace's dependency cache.

    Usage:
        bridge = InstallerBridge(workspace)
        outcome = bridge.install("requests")
    """

    def __init__(
        self,
        workspace: WorkspaceManager,
        backend: InstallerBackend | str = InstallerBackend.PIP,
        timeout: float | None = None,
        aliases: dict[str, str] | None = None,
        runner: Runner = subprocess.run,
    ):
        """
        Initialize installer bridge.

        Args:
            workspace: Workspace whose dependency cache is the install target
            backend: Installer command line tool
            timeout: Seconds before an install is abandoned (default: none)
            aliases: Extra import name -> distribution mappings
            runner: subprocess.run compatible callable
        """
        self.workspace = workspace
        self.backend = InstallerBackend(backend)
        self.timeout = timeout
        self.aliases = {**DEFAULT_PACKAGE_ALIASES, **(aliases or {})}
        self.runner = runner

    def requirement_for(self, identifier: str) -> str:
        """
        Map a top-level package identifier to an installable requirement.

        "@scope/name" -> "scope-name"; aliased import names map to their
        distribution; everything else is used as-is.

        Raises:
            InvalidReference: If the identifier is a subpath, a file or a
                runtime built-in
        """
        classification = classify(identifier)
        if not classification.is_installable or classification.resolved_path != identifier:
            raise InvalidReference(f"not a top-level package identifier: {identifier!r}")
        if identifier.startswith("@"):
            scope, name = identifier[1:].split("/", 1)
            return f"{scope}-{name}"
        return self.aliases.get(identifier, identifier)

    def install(self, identifier: str, workspace_path: Path | str | None = None) -> InstallOutcome:
        """
        Install one package and its dependencies into the dependency cache.

        Args:
            identifier: Top-level package identifier (never a subpath)
            workspace_path: Working directory for the installer (default:
                the bridge's workspace)

        Returns:
            Successful install outcome

        Raises:
            InstallationFailed: On any non-zero exit, timeout or missing tool
        """
        requirement = self.requirement_for(identifier)
        cwd = Path(workspace_path) if workspace_path is not None else self.workspace.path
        target = cwd / self.workspace.cache_dir.name
        command = install_command(self.backend, requirement, target)

        logger.info("Fetching and installing module '%s' from the package index...", requirement)
        started = time.monotonic()
        try:
            result = self.runner(
                command,
                cwd=str(cwd),
                capture_output=True,
                text=True,
                timeout=self.timeout,
                check=False,
            )
        except subprocess.TimeoutExpired as e:
            raise InstallationFailed(
                f"Installing '{requirement}' timed out after {self.timeout}s",
                requirement=requirement,
                output=_decode(e.output) + _decode(e.stderr),
            ) from e
        except OSError as e:
            raise InstallationFailed(
                f"Could not run {self.backend.value} to install '{requirement}': {e}",
                requirement=requirement,
            ) from e

        duration_ms = (time.monotonic() - started) * 1000
        output = "\n".join(part.strip() for part in (result.stdout or "", result.stderr or "") if part and part.strip())

        if result.returncode != 0:
            raise InstallationFailed(
                f"Installing '{requirement}' failed with exit code {result.returncode}"
                + (f":\n{output}" if output else ""),
                requirement=requirement,
                returncode=result.returncode,
                output=output,
            )

        logger.info("Done!")
        return InstallOutcome(
            success=True,
            requirement=requirement,
            message=output or None,
            returncode=result.returncode,
            duration_ms=duration_ms,
        )


def _decode(data: Any) -> str:
    if data is None:
        return ""
    if isinstance(data, bytes):
        return data.decode(errors="replace")
    return str(data)
