"""
Shared test configuration.

Provides a fake installer runner and keeps the process-wide import state
(sys.path, sys.meta_path, sys.modules) clean between tests.
"""

import subprocess
import sys
import uuid
from pathlib import Path

import pytest

from pipshell.interceptor import uninstall_hook
from pipshell.workspace import WorkspaceManager

FAKE_PREFIX = "pipshell_fake_"


class FakeRunner:
    """
    Stands in for subprocess.run.

    Records every command and, on success, writes the files registered for
    the requested requirement into the --target directory.
    """

    def __init__(self, packages=None, returncode=0, stdout="", stderr=""):
        self.packages = packages or {}
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr
        self.calls = []

    def __call__(self, command, **kwargs):
        command = list(command)
        self.calls.append((command, kwargs))
        if self.returncode == 0 and "--target" in command:
            target = Path(command[command.index("--target") + 1])
            for relative, content in self.packages.get(command[-1], {}).items():
                file = target / relative
                file.parent.mkdir(parents=True, exist_ok=True)
                file.write_text(content)
        return subprocess.CompletedProcess(command, self.returncode, self.stdout, self.stderr)

    @property
    def requirements(self):
        return [command[-1] for command, _ in self.calls]


@pytest.fixture
def unique_name():
    """Module name that cannot collide with anything installed."""
    return f"{FAKE_PREFIX}{uuid.uuid4().hex[:10]}"


@pytest.fixture
def workspace(tmp_path):
    """Initialized workspace in a temporary directory."""
    manager = WorkspaceManager(tmp_path / "workspace")
    manager.switch_to(clean_up_first=False)
    yield manager
    manager.unregister_search_path()


@pytest.fixture(autouse=True)
def restore_import_state(monkeypatch):
    """Undo hooks, search path entries and fake modules after each test."""
    # setenv first so the undo also removes a value exported by the test
    monkeypatch.setenv("PIPSHELL_WORKSPACE_PATH", "")
    monkeypatch.delenv("PIPSHELL_WORKSPACE_PATH")
    saved_path = list(sys.path)
    saved_meta_path = list(sys.meta_path)
    yield
    uninstall_hook()
    sys.path[:] = saved_path
    sys.meta_path[:] = saved_meta_path
    for name in [m for m in sys.modules if m.startswith(FAKE_PREFIX)]:
        del sys.modules[name]


@pytest.fixture
def make_runner():
    """Factory for FakeRunner instances."""
    return FakeRunner
