"""Tests for the runexpo command line."""

import tarfile

import pytest

from runexpo import cli
from runexpo.errors import NoDirectorySelected
from runexpo.orchestrator import SequenceStatus, Stage


def test_parser_create_defaults():
    args = cli.build_parser().parse_args(["create"])
    assert args.func is cli.cmd_create
    assert args.path is None
    assert args.port is None
    assert args.timeout is None
    assert not args.no_preview


def test_parser_open_options():
    args = cli.build_parser().parse_args(
        ["open", "/tmp/app", "--port", "9000", "--timeout", "0", "--no-preview", "-v"]
    )
    assert args.func is cli.cmd_open
    assert args.path == "/tmp/app"
    assert args.port == 9000
    assert args.timeout == 0
    assert args.no_preview and args.verbose


def test_parser_requires_command():
    with pytest.raises(SystemExit):
        cli.build_parser().parse_args([])


def test_load_applies_overrides(tmp_path):
    args = cli.build_parser().parse_args(
        ["open", "--config", str(tmp_path / "runexpo.toml"), "--port", "9100", "--timeout", "0"]
    )
    (tmp_path / "runexpo.toml").write_text("[server]\nport = 8090\n")

    config = cli._load(args)

    assert config.server.port == 9100
    assert config.server.readiness_timeout_sec is None


def test_provision_missing_archive(tmp_path, monkeypatch, capsys):
    monkeypatch.setattr("runexpo.embedded.resources_dir", lambda: tmp_path / "empty")

    code = cli.main(["provision", "--install-dir", str(tmp_path / "node")])

    assert code == cli.EXIT_FAILED
    assert "Cannot extract node" in capsys.readouterr().out
    assert not (tmp_path / "node").exists()


def test_provision_extracts_archive(tmp_path, capsys):
    src = tmp_path / "src" / "node-v22.0.0" / "bin"
    src.mkdir(parents=True)
    (src / "node").write_text("#!/bin/sh\n")
    archive = tmp_path / "node.tar.gz"
    with tarfile.open(archive, "w:gz") as tar:
        tar.add(tmp_path / "src" / "node-v22.0.0", arcname="node-v22.0.0")

    code = cli.main(
        ["provision", "--install-dir", str(tmp_path / "node"), "--archive", str(archive)]
    )

    assert code == 0
    assert (tmp_path / "node" / "bin" / "node").exists()
    assert "Node.js ready" in capsys.readouterr().out


def test_dialog_cancel_exits_with_no_directory(monkeypatch, capsys):
    def cancelled(dialog):
        raise NoDirectorySelected("User cancelled")

    monkeypatch.setattr(cli, "choose_create_directory", cancelled)

    assert cli.main(["create", "--no-preview"]) == cli.EXIT_NO_DIRECTORY
    assert "No directory selected" in capsys.readouterr().out


class FakeApp:
    status = SequenceStatus.ready("http://localhost:8081")
    instances = []

    def __init__(self, config):
        self.config = config
        self.ran = []
        self.waited = False
        FakeApp.instances.append(self)

    def __enter__(self):
        return self

    def __exit__(self, *args):
        pass

    def on_status(self, observer):
        observer(SequenceStatus.running(Stage.STARTING))

    def create_project(self, directory):
        self.ran.append(("create", directory))
        return self.status

    def open_project(self, directory):
        self.ran.append(("open", directory))
        return self.status

    def wait_server(self):
        self.waited = True


@pytest.fixture
def fake_app(monkeypatch):
    FakeApp.instances = []
    FakeApp.status = SequenceStatus.ready("http://localhost:8081")
    monkeypatch.setattr("runexpo.app.LauncherApp", FakeApp)
    return FakeApp


def test_open_without_preview_waits_for_server(fake_app, tmp_path, capsys):
    code = cli.main(["open", str(tmp_path), "--no-preview"])

    assert code == 0
    app = fake_app.instances[0]
    assert app.ran == [("open", tmp_path.resolve())]
    assert app.waited
    out = capsys.readouterr().out
    assert "Starting Expo development server..." in out


def test_create_shows_preview(fake_app, tmp_path, monkeypatch):
    shown = []
    monkeypatch.setattr("runexpo.preview.show_preview", lambda url, cfg=None: shown.append(url))

    assert cli.main(["create", str(tmp_path / "app")]) == 0
    assert shown == ["http://localhost:8081"]


def test_failed_sequence_exit_code(fake_app, tmp_path):
    fake_app.status = SequenceStatus.failed(Stage.SCAFFOLDING, "scaffolding exited with status 1")

    assert cli.main(["create", str(tmp_path / "app"), "--no-preview"]) == cli.EXIT_FAILED
    assert not fake_app.instances[0].waited


def test_interrupted_sequence_exit_code(fake_app, tmp_path, monkeypatch, capsys):
    def interrupted(self, directory):
        raise KeyboardInterrupt

    monkeypatch.setattr(fake_app, "open_project", interrupted)

    assert cli.main(["open", str(tmp_path), "--no-preview"]) == cli.EXIT_FAILED
    assert "Cancelled" in capsys.readouterr().out
