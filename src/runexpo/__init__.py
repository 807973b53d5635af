"""runexpo - bootstrap and preview Expo projects with a bundled runtime.

runexpo provisions a self-contained Node.js, scaffolds an Expo project with
bun, starts the Expo web dev server and shows the page it serves.

Quick Start:
    ```python
    import asyncio
    from pathlib import Path

    from runexpo import Orchestrator, OrchestratorConfig, default_install_path

    orch = Orchestrator(OrchestratorConfig(install_path=default_install_path()))
    status = asyncio.run(orch.open_project(Path("~/code/my-app").expanduser()))
    print(status.address)  # http://localhost:8081
    ```

Module structure:
    - embedded: runtime provisioning from the bundled archive
    - process: CommandSpec and the subprocess launcher
    - readiness: dev server URL detection
    - ports: dev server port reclamation
    - orchestrator: the launch sequence state machine
    - app / cli / dialogs / preview: desktop shell
"""

__version__ = "0.1.0"

from .config import LauncherConfig, load_config
from .embedded import default_install_path, ensure_runtime, provision_runtime
from .errors import (
    ConfigError,
    DirectoryCreationFailure,
    ExtractionFailure,
    MissingBundledResource,
    NoDirectorySelected,
    NonZeroExit,
    PatternNotFound,
    ReadinessTimeout,
    RunExpoError,
    SequenceBusy,
    SpawnFailure,
)
from .orchestrator import Orchestrator, OrchestratorConfig, SequenceStatus, Stage, StatusKind
from .process import CommandResult, CommandSpec, RunningProcess, build_env, launch, run_command
from .readiness import ReadinessResult, ReadinessScanner

__all__ = [
    "__version__",
    # Config
    "LauncherConfig",
    "load_config",
    # Runtime
    "default_install_path",
    "ensure_runtime",
    "provision_runtime",
    # Processes
    "CommandSpec",
    "CommandResult",
    "RunningProcess",
    "build_env",
    "launch",
    "run_command",
    # Readiness
    "ReadinessResult",
    "ReadinessScanner",
    # Orchestrator
    "Orchestrator",
    "OrchestratorConfig",
    "SequenceStatus",
    "Stage",
    "StatusKind",
    # Errors
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
