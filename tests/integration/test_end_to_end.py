"""
Full launch sequences against fake bun / npx scripts.

Port reclamation is replaced with a recorder so the tests never kill
whatever happens to listen on 8081 on the developer's machine.
"""

import sys

import pytest

from runexpo import orchestrator as orch_module
from runexpo.orchestrator import Orchestrator, OrchestratorConfig, Stage

pytestmark = [
    pytest.mark.integration,
    pytest.mark.skipif(sys.platform == "win32", reason="fake tools are /bin/sh scripts"),
]


@pytest.fixture
def reclaimed(monkeypatch):
    ports_seen = []

    async def fake_reclaim(port):
        ports_seen.append(port)
        return True

    monkeypatch.setattr(orch_module.ports, "reclaim_port", fake_reclaim)
    return ports_seen


def make_orchestrator(toolbox, **overrides) -> Orchestrator:
    config = OrchestratorConfig(
        install_path=toolbox.install_path,
        package_manager=toolbox.bun,
        readiness_timeout_sec=10.0,
        shutdown_grace_sec=2.0,
    )
    for key, value in overrides.items():
        setattr(config, key, value)
    return Orchestrator(config)


@pytest.mark.asyncio
async def test_create_project_end_to_end(toolbox, reclaimed, tmp_path):
    toolbox.write_bun()
    toolbox.write_runtime()
    target = tmp_path / "MyApp"
    orch = make_orchestrator(toolbox)

    try:
        status = await orch.create_project(target)

        assert status.is_ready, status.message
        assert status.address == "http://localhost:8081"
        assert target.is_dir()
        assert reclaimed == [8081]

        calls = toolbox.calls()
        assert calls[0] == f"bun create expo --yes --no-install {target}"
        assert calls[1] == "bun install"
        assert calls[2] == f"npx expo start --web --port 8081 CI=1 BROWSER=none cwd={target}"
        assert orch.server_proc is not None and orch.server_proc.running
    finally:
        await orch.shutdown()

    assert orch.server_proc is None


@pytest.mark.asyncio
async def test_open_project_end_to_end(toolbox, reclaimed, tmp_path):
    toolbox.write_runtime(banner="Web is waiting on http://localhost:19006")
    project = tmp_path / "existing"
    project.mkdir()
    orch = make_orchestrator(toolbox, port=19006)

    try:
        status = await orch.open_project(project)

        assert status.is_ready, status.message
        assert status.address == "http://localhost:19006"
        assert toolbox.calls() == [
            f"npx expo start --web --port 19006 CI=1 BROWSER=none cwd={project}"
        ]
    finally:
        await orch.shutdown()


@pytest.mark.asyncio
async def test_scaffold_failure_stops_sequence(toolbox, reclaimed, tmp_path):
    toolbox.write_bun(create_exit=1)
    toolbox.write_runtime()
    orch = make_orchestrator(toolbox)

    status = await orch.create_project(tmp_path / "broken")

    assert status.is_failed
    assert status.stage is Stage.SCAFFOLDING
    assert [c.split()[1] for c in toolbox.calls()] == ["create"]
    assert reclaimed == []
    assert orch.server_proc is None


@pytest.mark.asyncio
async def test_silent_server_times_out_and_is_stopped(toolbox, reclaimed, tmp_path):
    toolbox.write_runtime(banner="Bundling...", delay=0)
    project = tmp_path / "quiet"
    project.mkdir()
    orch = make_orchestrator(toolbox, readiness_timeout_sec=0.5)

    status = await orch.open_project(project)

    assert status.is_failed
    assert status.stage is Stage.AWAITING_READINESS
    assert orch.server_proc is None
    assert not orch.busy


@pytest.mark.asyncio
async def test_missing_runtime_archive(toolbox, reclaimed, tmp_path, monkeypatch):
    toolbox.write_bun()
    monkeypatch.setattr(orch_module.embedded, "resources_dir", lambda: tmp_path / "empty")
    orch = make_orchestrator(toolbox, install_path=tmp_path / "no-node")

    status = await orch.create_project(tmp_path / "app")

    assert status.is_failed
    assert status.stage is Stage.PROVISIONING
    assert "No bundled node found" in status.message
    assert toolbox.calls() == []
