"""Error types raised by runexpo.

Every failure inside a launch sequence is one of these. The orchestrator
catches them at the stage boundary and turns them into a ``Failed`` status;
outside a sequence (provisioning from the CLI, dialogs) they propagate.
"""

from __future__ import annotations

from typing import Optional


class RunExpoError(Exception):
    """Base class for all runexpo errors."""


class ConfigError(RunExpoError):
    """Raised when runexpo.toml cannot be parsed."""


class MissingBundledResource(RunExpoError):
    """A resource shipped with the app (runtime archive, bun) is absent."""


class DirectoryCreationFailure(RunExpoError):
    """The runtime install directory could not be created."""


class ExtractionFailure(RunExpoError):
    """Unpacking the runtime archive failed."""

    def __init__(self, message: str, exit_code: Optional[int] = None):
        super().__init__(message)
        self.exit_code = exit_code


class SpawnFailure(RunExpoError):
    """The OS refused to start a process, or the executable does not resolve."""


class NonZeroExit(RunExpoError):
    """A one-shot command finished with a nonzero exit status."""

    def __init__(self, stage: str, exit_code: int, output: str = ""):
        super().__init__(f"{stage} exited with status {exit_code}")
        self.stage = stage
        self.exit_code = exit_code
        self.output = output


class NoDirectorySelected(RunExpoError):
    """The user cancelled a directory picker."""


class PatternNotFound(RunExpoError):
    """The dev server closed its output without printing a local URL."""


class ReadinessTimeout(RunExpoError):
    """The dev server did not print a local URL in time."""

    def __init__(self, timeout: float):
        super().__init__(f"Dev server did not report a URL within {timeout:g}s")
        self.timeout = timeout


class SequenceBusy(RunExpoError):
    """A launch sequence is already running."""


__all__ = [
    "RunExpoError",
    "ConfigError",
    "MissingBundledResource",
    "DirectoryCreationFailure",
    "ExtractionFailure",
    "SpawnFailure",
    "NonZeroExit",
    "NoDirectorySelected",
    "PatternNotFound",
    "ReadinessTimeout",
    "SequenceBusy",
]
