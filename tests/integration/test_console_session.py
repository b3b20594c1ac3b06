"""
Integration tests: console input and the command line driving a session.

Only the installer subprocess is faked; workspace, history, the import
hook and the console run for real against temporary directories.
"""

import subprocess

import pytest

from pipshell import cli
from pipshell.config import SessionConfig
from pipshell.console import PipshellConsole, run_source
from pipshell.installer import InstallerBridge
from pipshell.session import Session
from pipshell.workspace import WorkspaceManager


@pytest.fixture
def session_factory(make_runner):
    """Sessions built from a config, with the installer runner faked."""
    created = []

    def build(config, packages=None, returncode=0, stderr="", project_initializer=None):
        runner = make_runner(packages=packages, returncode=returncode, stderr=stderr)
        workspace = WorkspaceManager(
            config.workspace_path,
            persistent=config.persist_workspace,
            project_initializer=project_initializer,
        )
        session = Session(
            config,
            installer=InstallerBridge(workspace, runner=runner),
            export_environment=False,
        )
        created.append((session, runner))
        return session

    build.created = created
    yield build
    for session, _ in created:
        session.close()


@pytest.fixture
def config(tmp_path):
    return SessionConfig(
        workspace_path=tmp_path / "workspace",
        home_dir=tmp_path,
        history_path=tmp_path / "history",
    )


class TestConsole:
    """Lines pushed through the console."""

    def test_import_installs_and_history_written(self, session_factory, config, unique_name):
        session = session_factory(config, packages={unique_name: {f"{unique_name}/__init__.py": "GREETING = 'hi'\n"}})
        session.start()
        console = PipshellConsole(session)

        console.push(f"import {unique_name}")
        console.push(f"greeting = {unique_name}.GREETING")

        assert console.locals["greeting"] == "hi"
        assert config.history_path.read_text().splitlines() == [
            f"import {unique_name}",
            f"greeting = {unique_name}.GREETING",
        ]
        _, runner = session_factory.created[0]
        assert runner.requirements == [unique_name]

    def test_failed_statement_does_not_end_session(self, session_factory, config, unique_name, capsys):
        session = session_factory(config, returncode=1, stderr="ERROR: No matching distribution")
        session.start()
        console = PipshellConsole(session)

        console.push(f"import {unique_name}")
        console.push("x = 1 + 1")

        assert console.locals["x"] == 2
        assert "No matching distribution" in capsys.readouterr().err

    def test_require_from_console(self, session_factory, config, unique_name):
        session = session_factory(
            config,
            packages={
                f"{unique_name}-ui": {
                    f"{unique_name}/ui/__init__.py": "",
                    f"{unique_name}/ui/button.py": "LABEL = 'ok'\n",
                }
            },
        )
        session.start()
        console = PipshellConsole(session)

        console.push(f"button = require('@{unique_name}/ui/button')")

        assert console.locals["button"].LABEL == "ok"

    def test_history_disabled(self, session_factory, tmp_path, unique_name):
        config = SessionConfig(workspace_path=tmp_path / "workspace", home_dir=tmp_path, history_path=None)
        session = session_factory(config)
        session.start()
        console = PipshellConsole(session)

        console.push("y = 5")

        assert console.locals["y"] == 5
        assert not (tmp_path / "history").exists()

    def test_history_survives_sessions(self, session_factory, config):
        first = session_factory(config)
        first.start()
        PipshellConsole(first).push("a = 1")
        first.close()

        second = session_factory(config)
        second.start()

        assert second.history.entries == ["a = 1"]


class TestRunSource:
    """run_source() maps outcomes to exit codes."""

    def test_success(self, session_factory, config, unique_name):
        session = session_factory(config, packages={unique_name: {f"{unique_name}.py": "N = 7\n"}})
        session.start()

        assert run_source(session, f"import {unique_name}\nassert {unique_name}.N == 7") == 0

    def test_error(self, session_factory, config, capsys):
        session = session_factory(config)
        session.start()

        assert run_source(session, "1 / 0") == 1
        assert "ZeroDivisionError" in capsys.readouterr().err

    @pytest.mark.parametrize("source,expected", [("raise SystemExit", 0), ("raise SystemExit(3)", 3), ("raise SystemExit('bye')", 1)])
    def test_system_exit(self, session_factory, config, source, expected):
        session = session_factory(config)
        session.start()
        assert run_source(session, source) == expected


class TestMain:
    """The pipshell command."""

    @pytest.fixture
    def isolated(self, tmp_path, monkeypatch, session_factory):
        """Run main() from an empty directory with sessions built by session_factory."""
        monkeypatch.chdir(tmp_path)
        for name in ("PIPSHELL_HISTORY_PATH", "PIPSHELL_INSTALLER", "PIPSHELL_HISTORY_SIZE"):
            monkeypatch.setenv(name, "")
            monkeypatch.delenv(name)
        monkeypatch.setattr(cli, "Session", session_factory)
        return session_factory

    def test_command_installs_and_exits(self, isolated, tmp_path, unique_name):
        code = cli.main([
            "--workspace", str(tmp_path / "ws"),
            "--no-history",
            "-c", f"import {unique_name}",
        ])

        # no package registered for the fake runner: install succeeds, import does not
        assert code == 1
        session, runner = isolated.created[0]
        assert runner.requirements == [unique_name]
        assert not session.started

    def test_workspace_flag_persists(self, isolated, tmp_path):
        code = cli.main(["--workspace", str(tmp_path / "ws"), "--no-history", "-c", "pass"])

        assert code == 0
        session, _ = isolated.created[0]
        assert session.workspace.persistent is True
        assert (tmp_path / "ws").is_dir()

    def test_no_history_flag(self, isolated, tmp_path):
        cli.main(["--workspace", str(tmp_path / "ws"), "--no-history", "-c", "pass"])

        session, _ = isolated.created[0]
        assert session.config.history_path is None
        assert session.history is None

    def test_installer_flag(self, isolated, tmp_path):
        cli.main(["--workspace", str(tmp_path / "ws"), "--no-history", "--installer", "uv", "-c", "pass"])

        session, _ = isolated.created[0]
        assert session.config.installer == "uv"

    def test_dotenv_supplies_settings(self, isolated, tmp_path):
        history = tmp_path / "from_dotenv_history"
        (tmp_path / ".env").write_text(f"PIPSHELL_HISTORY_PATH={history}\n")

        cli.main(["--workspace", str(tmp_path / "ws"), "-c", "pass"])

        session, _ = isolated.created[0]
        assert session.config.history_path == history

    def test_failing_command(self, isolated, tmp_path):
        assert cli.main(["--workspace", str(tmp_path / "ws"), "--no-history", "-c", "raise ValueError"]) == 1

    def test_invalid_installer_rejected(self, isolated):
        with pytest.raises(SystemExit):
            cli.main(["--installer", "conda"])

    def test_failed_start_removes_ephemeral_workspace(self, isolated, tmp_path, monkeypatch):
        monkeypatch.setenv("HOME", str(tmp_path))

        def failing_init(path):
            raise subprocess.CalledProcessError(1, ["uv", "init"])

        monkeypatch.setattr(cli, "Session", lambda config: isolated(config, project_initializer=failing_init))

        with pytest.raises(subprocess.CalledProcessError):
            cli.main(["--no-history", "-c", "pass"])

        session, _ = isolated.created[0]
        assert session.workspace.persistent is False
        assert session.workspace.path.parent == tmp_path / ".pipshell"
        assert not session.workspace.path.exists()
