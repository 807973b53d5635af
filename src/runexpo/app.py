"""
Desktop host for the launch sequence.

The orchestrator runs on an asyncio loop in a background thread so the
caller's thread (the one that owns the preview window) never blocks on a
subprocess.
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import logging
import threading
from pathlib import Path
from typing import Any, Coroutine, Optional, TypeVar

from .config import LauncherConfig
from .orchestrator import Orchestrator, OrchestratorConfig, SequenceStatus, StatusObserver

T = TypeVar("T")


async def _settle(tasks: list[asyncio.Task]) -> None:
    # Let cancelled sequences run their cleanup (child processes, dev server)
    pending = [t for t in tasks if not t.done()]
    if pending:
        await asyncio.wait(pending)


class LauncherApp:
    """Owns the event loop thread and the orchestrator it drives."""

    def __init__(self, config: LauncherConfig, orchestrator: Optional[Orchestrator] = None):
        self.config = config
        self.orchestrator = orchestrator or Orchestrator(
            OrchestratorConfig.from_launcher_config(config)
        )
        self.loop = asyncio.new_event_loop()
        self._thread = threading.Thread(target=self._run_loop, name="runexpo-loop", daemon=True)
        self._closed = False

    def _run_loop(self) -> None:
        asyncio.set_event_loop(self.loop)
        try:
            self.loop.run_forever()
        except Exception as e:
            logging.error("[runexpo] Event loop error: %s", e)

    def start(self) -> LauncherApp:
        self._thread.start()
        return self

    def submit(self, coro: Coroutine[Any, Any, T]) -> concurrent.futures.Future[T]:
        """Schedule ``coro`` on the loop thread."""
        return asyncio.run_coroutine_threadsafe(coro, self.loop)

    def on_status(self, observer: StatusObserver) -> None:
        """Register ``observer``; it is called on the loop thread."""
        self.loop.call_soon_threadsafe(self.orchestrator.subscribe, observer)

    def create_project(self, target_dir: Path) -> SequenceStatus:
        return self._run_sequence(self.orchestrator.create_project(target_dir))

    def open_project(self, project_dir: Path) -> SequenceStatus:
        return self._run_sequence(self.orchestrator.open_project(project_dir))

    def _run_sequence(self, coro: Coroutine[Any, Any, SequenceStatus]) -> SequenceStatus:
        """Block on a sequence. Ctrl+C cancels it and waits for its cleanup."""
        task_ref: list[asyncio.Task] = []

        async def tracked() -> SequenceStatus:
            task = asyncio.current_task()
            assert task is not None
            task_ref.append(task)
            return await coro

        future = self.submit(tracked())
        try:
            return future.result()
        except KeyboardInterrupt:
            future.cancel()
            self.submit(_settle(task_ref)).result()
            raise

    def wait_server(self, poll_interval: float = 0.5) -> Optional[int]:
        """Block until the dev server exits. Interruptible with Ctrl+C."""
        future = self.submit(self.orchestrator.wait_server())
        while True:
            try:
                return future.result(timeout=poll_interval)
            except concurrent.futures.TimeoutError:
                continue
            except KeyboardInterrupt:
                future.cancel()
                raise

    def close(self) -> None:
        """Stop the dev server and the loop thread. Safe to call twice."""
        if self._closed:
            return
        self._closed = True
        if self._thread.is_alive():
            self.submit(self.orchestrator.shutdown()).result()
            self.loop.call_soon_threadsafe(self.loop.stop)
            self._thread.join()
        self.loop.close()

    def __enter__(self) -> LauncherApp:
        return self.start()

    def __exit__(self, *args: object) -> None:
        self.close()


__all__ = ["LauncherApp"]
