"""Process launching for the external tools runexpo drives.

Two usage modes:

- blocking: ``run_command(spec)`` launches, waits for exit and returns the
  captured output (scaffold, install, tar).
- streaming: ``launch(spec)`` then hand ``proc.detach_stdout()`` to a
  ReadinessScanner without waiting for exit (dev server).
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal
import sys
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Mapping, Optional

from .errors import NonZeroExit, SpawnFailure

# Parent variables copied into every child environment. Nothing else is inherited.
INHERITED_VARS = ("HOME",)
# Windows processes cannot start without these
WINDOWS_INHERITED_VARS = (
    "SYSTEMROOT",
    "USERPROFILE",
    "APPDATA",
    "LOCALAPPDATA",
    "TEMP",
    "TMP",
    "PATHEXT",
    "COMSPEC",
)


def inherited_vars() -> tuple[str, ...]:
    if sys.platform.startswith("win"):
        return INHERITED_VARS + WINDOWS_INHERITED_VARS
    return INHERITED_VARS


def build_env(
    runtime_bin: Optional[Path],
    extra: Optional[Mapping[str, str]] = None,
    base: Optional[Mapping[str, str]] = None,
) -> dict[str, str]:
    """Build the complete environment for a spawned tool.

    PATH is the parent's PATH with ``runtime_bin`` prepended so node, npx and
    friends resolve against the provisioned runtime.
    """
    base = os.environ if base is None else base
    env_path = base.get("PATH", "")
    if runtime_bin is not None:
        env_path = f"{runtime_bin}{os.pathsep}{env_path}" if env_path else str(runtime_bin)

    env = {"PATH": env_path}
    for name in inherited_vars():
        if name in base:
            env[name] = base[name]
    if extra:
        env.update(extra)
    return env


@dataclass(frozen=True)
class CommandSpec:
    """Everything needed to spawn one external command."""

    executable: str
    args: tuple[str, ...] = ()
    env: Mapping[str, str] = field(default_factory=dict)
    cwd: Optional[Path] = None
    capture_output: bool = False
    # Run in its own process group so terminate() reaches grandchildren too
    new_session: bool = False

    def __post_init__(self):
        object.__setattr__(self, "executable", str(self.executable))
        object.__setattr__(self, "args", tuple(str(a) for a in self.args))
        object.__setattr__(self, "env", MappingProxyType(dict(self.env)))

    def argv(self) -> list[str]:
        return [self.executable, *self.args]

    def describe(self) -> str:
        return " ".join(self.argv())


@dataclass(frozen=True)
class CommandResult:
    """Outcome of a one-shot command."""

    exit_code: int
    output: str = ""

    @property
    def success(self) -> bool:
        return self.exit_code == 0

    def raise_for_status(self, stage: str) -> None:
        """Raise NonZeroExit if the command failed."""
        if not self.success:
            raise NonZeroExit(stage, self.exit_code, self.output)


class RunningProcess:
    """A spawned process and its (optional) captured stdout."""

    def __init__(self, spec: CommandSpec, proc: asyncio.subprocess.Process):
        self.spec = spec
        self._proc = proc
        self._output: Optional[bytes] = None
        self._stdout_detached = False
        self.exit_status: Optional[int] = None

    @property
    def pid(self) -> int:
        return self._proc.pid

    @property
    def running(self) -> bool:
        return self._proc.returncode is None

    def detach_stdout(self) -> asyncio.StreamReader:
        """Hand the stdout stream to a consumer (streaming mode).

        After this the process no longer buffers its own output;
        read_all_output() returns b"".
        """
        if self._proc.stdout is None:
            raise ValueError(f"stdout of {self.spec.executable} is not captured")
        self._stdout_detached = True
        return self._proc.stdout

    async def wait_for_exit(self) -> int:
        """Block until the process exits and return its status.

        Captured output is drained while waiting so the child never stalls
        on a full pipe.
        """
        stdout = self._proc.stdout
        if stdout is not None and not self._stdout_detached and self._output is None:
            self._output = await stdout.read()
        self.exit_status = await self._proc.wait()
        return self.exit_status

    async def read_all_output(self) -> bytes:
        """Return the entire captured output, waiting for EOF if needed."""
        if self._stdout_detached:
            return b""
        if self._output is None:
            await self.wait_for_exit()
        return self._output or b""

    def _signal(self, sig: int) -> None:
        try:
            if self.spec.new_session and hasattr(os, "killpg"):
                os.killpg(self._proc.pid, sig)
            else:
                self._proc.send_signal(sig)
        except (ProcessLookupError, PermissionError):
            pass

    async def terminate(self, grace: float = 5.0) -> Optional[int]:
        """Stop the process: SIGTERM first, SIGKILL after ``grace`` seconds."""
        if self._proc.returncode is not None:
            # The leader is gone but children in its group may still hold the pipe
            if self.spec.new_session:
                self._signal(signal.SIGTERM)
            self.exit_status = self._proc.returncode
            return self.exit_status

        self._signal(signal.SIGTERM)
        try:
            self.exit_status = await asyncio.wait_for(self._proc.wait(), timeout=grace)
        except asyncio.TimeoutError:
            logging.warning("[runexpo] %s ignored SIGTERM, killing", self.spec.executable)
            self._signal(getattr(signal, "SIGKILL", signal.SIGTERM))
            self.exit_status = await self._proc.wait()
        return self.exit_status


async def launch(spec: CommandSpec) -> RunningProcess:
    """Spawn ``spec`` and return immediately.

    Raises:
        SpawnFailure: the executable does not resolve or the OS refused.
    """
    logging.debug("[runexpo] Spawning: %s (cwd=%s)", spec.describe(), spec.cwd)
    try:
        proc = await asyncio.create_subprocess_exec(
            spec.executable,
            *spec.args,
            env=dict(spec.env),
            cwd=str(spec.cwd) if spec.cwd is not None else None,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE if spec.capture_output else None,
            start_new_session=spec.new_session,
        )
    except OSError as e:
        raise SpawnFailure(f"Cannot start {spec.executable}: {e}") from e
    return RunningProcess(spec, proc)


async def run_command(spec: CommandSpec) -> CommandResult:
    """Run ``spec`` to completion (blocking mode).

    Cancelling the caller stops the child before the cancellation propagates.
    """
    proc = await launch(spec)
    try:
        exit_code = await proc.wait_for_exit()
    except asyncio.CancelledError:
        await proc.terminate()
        raise
    output = (await proc.read_all_output()).decode("utf-8", errors="replace")
    return CommandResult(exit_code=exit_code, output=output)


__all__ = [
    "CommandSpec",
    "CommandResult",
    "RunningProcess",
    "build_env",
    "launch",
    "run_command",
]
