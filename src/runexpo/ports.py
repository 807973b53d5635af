"""Free the dev-server port before starting a new server.

Best effort only: nothing here raises. The process table is queried with
psutil; where that is not permitted (macOS without root) the
``lsof | xargs kill -9`` shell pipeline is used instead.
"""

from __future__ import annotations

import logging
import os

import psutil

from .errors import RunExpoError
from .process import CommandSpec, build_env, run_command

SHELL = "/bin/sh"


def find_listeners(port: int) -> list[int]:
    """Return PIDs listening on TCP ``port``.

    Raises:
        psutil.AccessDenied: the platform hides other processes' sockets.
    """
    pids = set()
    for conn in psutil.net_connections(kind="tcp"):
        if conn.pid is None or not conn.laddr:
            continue
        if conn.laddr.port == port and conn.status == psutil.CONN_LISTEN:
            pids.add(conn.pid)
    pids.discard(os.getpid())
    return sorted(pids)


def kill_pids(pids: list[int]) -> list[int]:
    """SIGKILL each pid; return the ones that were killed."""
    killed = []
    for pid in pids:
        try:
            proc = psutil.Process(pid)
            logging.info("[runexpo] Killing %s (PID %d) holding the port", proc.name(), pid)
            proc.kill()
            killed.append(pid)
        except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess) as e:
            logging.warning("[runexpo] Cannot kill PID %d: %s", pid, e)
    return killed


def shell_reclaim_command(port: int) -> CommandSpec:
    return CommandSpec(
        executable=SHELL,
        args=("-c", f"lsof -ti tcp:{port} | xargs kill -9"),
        env=build_env(None),
        capture_output=True,
    )


async def reclaim_port(port: int) -> bool:
    """Kill whatever listens on ``port``. Returns False if the attempt failed."""
    try:
        killed = kill_pids(find_listeners(port))
        logging.debug("[runexpo] Port %d reclaimed via process table (%d killed)", port, len(killed))
        return True
    except psutil.AccessDenied:
        logging.debug("[runexpo] Process table not readable, falling back to lsof")
    except psutil.Error as e:
        logging.warning("[runexpo] psutil failed (%s), falling back to lsof", e)

    try:
        result = await run_command(shell_reclaim_command(port))
    except RunExpoError as e:
        logging.warning("[runexpo] Port reclaim failed: %s", e)
        return False

    # xargs exits nonzero when lsof found nothing to kill
    if not result.success:
        logging.debug("[runexpo] Port reclaim exited %d: %s", result.exit_code, result.output)
    return True


__all__ = ["find_listeners", "kill_pids", "reclaim_port", "shell_reclaim_command"]
