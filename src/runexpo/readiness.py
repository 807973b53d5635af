"""Detect when the dev server is reachable by watching its stdout.

Each chunk read from the stream is searched on its own. A URL that is split
across two reads is not detected; dev servers print the URL in a single
write, so in practice this does not matter.
"""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Optional

from .errors import PatternNotFound, ReadinessTimeout

DEFAULT_PATTERN = re.compile(r"http://localhost:[0-9]+")
CHUNK_SIZE = 4096


@dataclass(frozen=True)
class ReadinessResult:
    """The address the dev server reported."""

    address: str
    found_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class ReadinessScanner:
    """Scans output chunks for the first local URL.

    Example:
        >>> scanner = ReadinessScanner()
        >>> scanner.feed(b"Waiting on http://localhost:8081").address
        'http://localhost:8081'
    """

    def __init__(self, pattern: re.Pattern[str] = DEFAULT_PATTERN):
        self.pattern = pattern
        self.result: Optional[ReadinessResult] = None
        self._ready: Optional[asyncio.Future[Optional[ReadinessResult]]] = None

    def _future(self) -> asyncio.Future[Optional[ReadinessResult]]:
        if self._ready is None:
            self._ready = asyncio.get_running_loop().create_future()
        return self._ready

    def feed(self, chunk: bytes) -> Optional[ReadinessResult]:
        """Scan one chunk. Returns the result only for the first match."""
        try:
            text = chunk.decode("utf-8")
        except UnicodeDecodeError:
            return None
        if not text:
            return None

        logging.debug("[runexpo] dev server: %s", text.rstrip())

        if self.result is not None:
            return None

        match = self.pattern.search(text)
        if match is None:
            logging.debug("[runexpo] URL not found")
            return None

        self.result = ReadinessResult(address=match.group(0))
        if self._ready is not None and not self._ready.done():
            self._ready.set_result(self.result)
        return self.result

    async def watch(
        self,
        stream: asyncio.StreamReader,
        on_ready: Optional[Callable[[ReadinessResult], None]] = None,
    ) -> None:
        """Consume ``stream`` until EOF, reporting the first URL.

        Keeps reading after the match so the server never blocks on a full
        pipe. Cancel the task to stop watching.
        """
        ready = self._future()
        while True:
            chunk = await stream.read(CHUNK_SIZE)
            if not chunk:
                break
            result = self.feed(chunk)
            if result is not None and on_ready is not None:
                on_ready(result)

        if not ready.done():
            ready.set_result(None)

    async def wait_ready(self, timeout: Optional[float] = None) -> ReadinessResult:
        """Wait for the first URL.

        Raises:
            ReadinessTimeout: nothing matched within ``timeout`` seconds.
            PatternNotFound: the stream ended without a match.
        """
        if self.result is not None:
            return self.result
        try:
            result = await asyncio.wait_for(asyncio.shield(self._future()), timeout=timeout)
        except asyncio.TimeoutError as e:
            raise ReadinessTimeout(timeout or 0.0) from e
        if result is None:
            raise PatternNotFound("Dev server closed its output without a URL")
        return result


__all__ = ["DEFAULT_PATTERN", "ReadinessResult", "ReadinessScanner"]
