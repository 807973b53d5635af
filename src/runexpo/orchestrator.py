"""
Launch sequence orchestrator.

Runs the fixed pipeline that takes a directory to a running Expo web preview:

    provision Node.js -> scaffold -> install -> free port -> start -> await URL

The fresh-project flow runs every stage; the existing-project flow skips
scaffolding and installing. Progress is published as a SequenceStatus value.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Iterator, Optional

from opentelemetry import trace

from . import embedded, ports, process
from .config import LauncherConfig
from .errors import RunExpoError, SequenceBusy
from .process import CommandSpec, RunningProcess, build_env
from .readiness import ReadinessScanner

tracer = trace.get_tracer(__name__)

ENV_BIN = "/usr/bin/env"


class Stage(str, Enum):
    IDLE = "idle"
    PROVISIONING = "provisioning"
    SCAFFOLDING = "scaffolding"
    INSTALLING = "installing"
    PORT_RECLAIMING = "port_reclaiming"
    STARTING = "starting"
    AWAITING_READINESS = "awaiting_readiness"
    READY = "ready"


STAGE_MESSAGES = {
    Stage.PROVISIONING: "Preparing Node.js...",
    Stage.SCAFFOLDING: "Creating...",
    Stage.INSTALLING: "Installing packages...",
    Stage.PORT_RECLAIMING: "Freeing dev server port...",
    Stage.STARTING: "Starting Expo development server...",
    Stage.AWAITING_READINESS: "Waiting for Expo development server...",
}


class StatusKind(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    READY = "ready"
    FAILED = "failed"


@dataclass(frozen=True)
class SequenceStatus:
    """Tagged status of the current launch sequence.

    One of Idle, Running(stage, message), Ready(address) or
    Failed(stage, message). Replaced on every transition.
    """

    kind: StatusKind
    stage: Stage
    message: str = ""
    address: Optional[str] = None

    @classmethod
    def idle(cls) -> SequenceStatus:
        return cls(StatusKind.IDLE, Stage.IDLE, "Idle")

    @classmethod
    def running(cls, stage: Stage, message: Optional[str] = None) -> SequenceStatus:
        return cls(StatusKind.RUNNING, stage, message or STAGE_MESSAGES.get(stage, stage.value))

    @classmethod
    def ready(cls, address: str) -> SequenceStatus:
        return cls(StatusKind.READY, Stage.READY, f"Running at {address}", address)

    @classmethod
    def failed(cls, stage: Stage, message: str) -> SequenceStatus:
        return cls(StatusKind.FAILED, stage, message)

    @property
    def is_running(self) -> bool:
        return self.kind is StatusKind.RUNNING

    @property
    def is_ready(self) -> bool:
        return self.kind is StatusKind.READY

    @property
    def is_failed(self) -> bool:
        return self.kind is StatusKind.FAILED

    def __str__(self) -> str:
        return self.message


StatusObserver = Callable[[SequenceStatus], None]


@dataclass
class OrchestratorConfig:
    """Configuration for the orchestrator."""

    install_path: Path
    archive: Optional[Path] = None
    package_manager: Optional[Path] = None
    framework: str = "expo"
    port: int = 8081
    readiness_timeout_sec: Optional[float] = 120.0  # None = wait forever
    shutdown_grace_sec: float = 5.0

    @classmethod
    def from_launcher_config(cls, config: LauncherConfig) -> OrchestratorConfig:
        return cls(
            install_path=config.runtime.install_dir or embedded.default_install_path(),
            archive=config.runtime.archive,
            package_manager=config.tools.package_manager,
            framework=config.tools.framework,
            port=config.server.port,
            readiness_timeout_sec=config.server.readiness_timeout_sec,
            shutdown_grace_sec=config.server.shutdown_grace_sec,
        )


class Orchestrator:
    """Runs launch sequences, one at a time.

    All status changes go through _publish(), which runs on the event loop
    that drives the sequence; observers are called there too.
    """

    def __init__(self, config: OrchestratorConfig):
        self.config = config
        self.status = SequenceStatus.idle()
        self.server_proc: Optional[RunningProcess] = None
        self.scanner: Optional[ReadinessScanner] = None
        self._watch_task: Optional[asyncio.Task] = None
        self._observers: list[StatusObserver] = []
        self._lock = asyncio.Lock()
        self._stage = Stage.IDLE

    @property
    def address(self) -> Optional[str]:
        return self.status.address

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    def subscribe(self, observer: StatusObserver) -> None:
        """Call ``observer`` with every new status."""
        self._observers.append(observer)

    def _publish(self, status: SequenceStatus) -> None:
        self.status = status
        logging.info("[runexpo] %s", status.message)
        for observer in list(self._observers):
            observer(status)

    @contextmanager
    def _enter(self, stage: Stage) -> Iterator[trace.Span]:
        self._stage = stage
        self._publish(SequenceStatus.running(stage))
        with tracer.start_as_current_span(f"runexpo.stage.{stage.value}") as span:
            yield span

    async def create_project(self, target_dir: Path) -> SequenceStatus:
        """Scaffold a new project in ``target_dir`` and start its dev server."""
        return await self._run(Path(target_dir), fresh=True)

    async def open_project(self, project_dir: Path) -> SequenceStatus:
        """Start the dev server for an existing project."""
        return await self._run(Path(project_dir), fresh=False)

    async def _run(self, directory: Path, fresh: bool) -> SequenceStatus:
        if self._lock.locked():
            raise SequenceBusy("A launch sequence is already running")

        async with self._lock:
            with tracer.start_as_current_span(
                "runexpo.sequence",
                attributes={
                    "runexpo.flow": "create" if fresh else "open",
                    "runexpo.directory": str(directory),
                    "runexpo.port": self.config.port,
                },
            ) as span:
                try:
                    await self._run_stages(directory, fresh)
                    span.set_status(trace.Status(trace.StatusCode.OK))
                except RunExpoError as e:
                    span.set_status(trace.Status(trace.StatusCode.ERROR, str(e)))
                    span.record_exception(e)
                    logging.error("[runexpo] %s failed: %s", self._stage.value, e)
                    self._publish(SequenceStatus.failed(self._stage, str(e)))
                    if self._stage is Stage.AWAITING_READINESS:
                        await self._stop_server()
                except asyncio.CancelledError:
                    self._publish(SequenceStatus.failed(self._stage, "Cancelled"))
                    await self._stop_server()
                    raise
        return self.status

    async def _run_stages(self, directory: Path, fresh: bool) -> None:
        with self._enter(Stage.PROVISIONING):
            bun = embedded.find_package_manager(self.config.package_manager) if fresh else None
            runtime_bin = await embedded.provision_runtime(
                self.config.install_path, self.config.archive
            )
        env = build_env(runtime_bin)

        if fresh:
            with self._enter(Stage.SCAFFOLDING):
                await self._run_one_shot(
                    Stage.SCAFFOLDING,
                    CommandSpec(
                        executable=str(bun),
                        args=(
                            "create",
                            self.config.framework,
                            "--yes",
                            "--no-install",
                            str(directory),
                        ),
                        env=env,
                        capture_output=True,
                    ),
                )

            with self._enter(Stage.INSTALLING):
                await self._run_one_shot(
                    Stage.INSTALLING,
                    CommandSpec(
                        executable=str(bun),
                        args=("install",),
                        env=env,
                        cwd=directory,
                        capture_output=True,
                    ),
                )

        with self._enter(Stage.PORT_RECLAIMING):
            await self._stop_server()
            if not await ports.reclaim_port(self.config.port):
                logging.warning("[runexpo] Could not free port %d, starting anyway", self.config.port)

        with self._enter(Stage.STARTING):
            await self._start_server(directory, runtime_bin)

        with self._enter(Stage.AWAITING_READINESS) as span:
            assert self.scanner is not None
            result = await self.scanner.wait_ready(self.config.readiness_timeout_sec)
            span.set_attribute("runexpo.address", result.address)

        self._stage = Stage.READY
        self._publish(SequenceStatus.ready(result.address))

    async def _run_one_shot(self, stage: Stage, spec: CommandSpec) -> None:
        result = await process.run_command(spec)
        output = result.output.strip()
        if output:
            logging.info("[runexpo] %s output:\n%s", stage.value, output)
        result.raise_for_status(stage.value)
        if output:
            self._publish(SequenceStatus.running(stage, output))

    async def _start_server(self, directory: Path, runtime_bin: Path) -> None:
        spec = CommandSpec(
            executable=ENV_BIN,
            args=(
                "npx",
                self.config.framework,
                "start",
                "--web",
                "--port",
                str(self.config.port),
            ),
            env=build_env(runtime_bin, {"CI": "1", "BROWSER": "none"}),
            cwd=directory,
            capture_output=True,
            new_session=True,
        )
        self.server_proc = await process.launch(spec)
        logging.info("[runexpo] Dev server started (PID %d)", self.server_proc.pid)

        self.scanner = ReadinessScanner()
        self._watch_task = asyncio.create_task(
            self.scanner.watch(self.server_proc.detach_stdout())
        )

    async def _stop_server(self) -> None:
        # The watch task keeps draining stdout until the server is gone
        if self.server_proc is not None and self.server_proc.running:
            logging.info("[runexpo] Stopping dev server (PID %d)...", self.server_proc.pid)
            await self.server_proc.terminate(self.config.shutdown_grace_sec)
        self.server_proc = None

        if self._watch_task is not None:
            self._watch_task.cancel()
            try:
                await self._watch_task
            except asyncio.CancelledError:
                pass
            self._watch_task = None

    async def wait_server(self) -> Optional[int]:
        """Block until the dev server exits; return its status (None if not started)."""
        if self.server_proc is None:
            return None
        return await self.server_proc.wait_for_exit()

    async def shutdown(self) -> None:
        """Stop the dev server started by the last sequence."""
        await self._stop_server()
        logging.info("[runexpo] Shutdown complete")


__all__ = [
    "Stage",
    "StatusKind",
    "SequenceStatus",
    "OrchestratorConfig",
    "Orchestrator",
]
