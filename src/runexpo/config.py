"""Configuration management for runexpo.

Parses runexpo.toml files with support for:
- Runtime provisioning (install directory, bundled archive)
- Tool selection (package manager binary, scaffolding framework)
- Dev server settings (port, readiness timeout)
- Preview window size

Example runexpo.toml structure:

    [runtime]
    install_dir = "${HOME}/Downloads/node"
    archive = "/opt/runexpo/node.tar.gz"

    [tools]
    package_manager = "/usr/local/bin/bun"
    framework = "expo"

    [server]
    port = 8081
    readiness_timeout_sec = 120  # 0 = wait forever

    [preview]
    width = 375
    height = 812

Every key is optional. Environment variables RUNEXPO_NODE_DIR,
RUNEXPO_NODE_ARCHIVE, RUNEXPO_BUN and RUNEXPO_PORT take precedence over the
file.
"""

from __future__ import annotations

import os
import re
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from platformdirs import user_config_dir

from .errors import ConfigError

if sys.version_info >= (3, 11):
    import tomllib as toml  # type: ignore
else:
    import tomli as toml  # type: ignore

APP_NAME = "runexpo"
CONFIG_FILENAME = "runexpo.toml"
DEFAULT_PORT = 8081


def _load_env_file(env_path: Path) -> None:
    """Load environment variables from .env file."""
    if not env_path.exists():
        return

    with open(env_path, "r", encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if not line or line.startswith("#"):
                continue

            if "=" in line:
                key, _, value = line.partition("=")
                key = key.strip()
                value = value.strip()

                if value and value[0] in ('"', "'") and value[-1] == value[0]:
                    value = value[1:-1]

                # Only set if not already in environment
                if key and key not in os.environ:
                    os.environ[key] = value


def _expand_env_vars(value: Any) -> Any:
    """Recursively expand ${VAR} and $VAR environment variable references."""
    if isinstance(value, str):

        def replace_var(match):
            var_name = match.group(1) or match.group(2)
            return os.environ.get(var_name, match.group(0))

        pattern = r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}|\$([A-Za-z_][A-Za-z0-9_]*)"
        return re.sub(pattern, replace_var, value)
    elif isinstance(value, dict):
        return {k: _expand_env_vars(v) for k, v in value.items()}
    elif isinstance(value, list):
        return [_expand_env_vars(item) for item in value]
    else:
        return value


def _optional_path(value: Optional[str]) -> Optional[Path]:
    return Path(value).expanduser() if value else None


def readiness_timeout(value: Any) -> Optional[float]:
    """Seconds to wait for the dev server URL; zero or less means no limit."""
    if value is None:
        return None
    try:
        seconds = float(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid readiness_timeout_sec: {value!r}") from e
    return seconds if seconds > 0 else None


@dataclass
class RuntimeConfig:
    """Where the bundled Node.js runtime lives."""

    install_dir: Optional[Path] = None  # None = <downloads>/node
    archive: Optional[Path] = None  # None = bundled resources/


@dataclass
class ToolsConfig:
    """External tools driven by the launch sequence."""

    package_manager: Optional[Path] = None  # None = bundled bun, then PATH
    framework: str = "expo"


@dataclass
class ServerConfig:
    """Dev server settings."""

    port: int = DEFAULT_PORT
    readiness_timeout_sec: Optional[float] = 120.0  # None = wait forever
    shutdown_grace_sec: float = 5.0


@dataclass
class PreviewConfig:
    """Preview window settings."""

    title: str = "RunExpo"
    width: int = 375
    height: int = 812


@dataclass
class LauncherConfig:
    """Complete runexpo configuration."""

    runtime: RuntimeConfig = field(default_factory=RuntimeConfig)
    tools: ToolsConfig = field(default_factory=ToolsConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
    preview: PreviewConfig = field(default_factory=PreviewConfig)

    @classmethod
    def load(cls, path: Path) -> LauncherConfig:
        """Load configuration from a runexpo.toml file.

        A .env file next to the config is loaded first so that ${VAR}
        references can point at it. Missing files yield defaults.
        """
        if not path.exists():
            return cls().apply_env()

        _load_env_file(path.parent / ".env")

        try:
            raw_data = toml.loads(path.read_text(encoding="utf-8"))
        except (toml.TOMLDecodeError, OSError) as e:
            raise ConfigError(f"Failed to parse {path}: {e}") from e
        data = _expand_env_vars(raw_data)

        config = cls()

        if "runtime" in data:
            runtime_data = data["runtime"]
            config.runtime = RuntimeConfig(
                install_dir=_optional_path(runtime_data.get("install_dir")),
                archive=_optional_path(runtime_data.get("archive")),
            )

        if "tools" in data:
            tools_data = data["tools"]
            config.tools = ToolsConfig(
                package_manager=_optional_path(tools_data.get("package_manager")),
                framework=tools_data.get("framework", "expo"),
            )

        if "server" in data:
            server_data = data["server"]
            config.server = ServerConfig(
                port=int(server_data.get("port", DEFAULT_PORT)),
                readiness_timeout_sec=readiness_timeout(
                    server_data.get("readiness_timeout_sec", 120.0)
                ),
                shutdown_grace_sec=float(server_data.get("shutdown_grace_sec", 5.0)),
            )

        if "preview" in data:
            preview_data = data["preview"]
            config.preview = PreviewConfig(
                title=preview_data.get("title", "RunExpo"),
                width=int(preview_data.get("width", 375)),
                height=int(preview_data.get("height", 812)),
            )

        return config.apply_env()

    def apply_env(self) -> LauncherConfig:
        """Apply RUNEXPO_* environment overrides in place and return self."""
        if os.environ.get("RUNEXPO_NODE_DIR"):
            self.runtime.install_dir = Path(os.environ["RUNEXPO_NODE_DIR"]).expanduser()
        if os.environ.get("RUNEXPO_NODE_ARCHIVE"):
            self.runtime.archive = Path(os.environ["RUNEXPO_NODE_ARCHIVE"]).expanduser()
        if os.environ.get("RUNEXPO_BUN"):
            self.tools.package_manager = Path(os.environ["RUNEXPO_BUN"]).expanduser()
        if os.environ.get("RUNEXPO_PORT"):
            try:
                self.server.port = int(os.environ["RUNEXPO_PORT"])
            except ValueError as e:
                raise ConfigError(f"RUNEXPO_PORT must be an integer: {e}") from e
        return self


def config_search_paths(start_dir: Path = Path(".")) -> list[Path]:
    """Candidate runexpo.toml locations, highest priority first."""
    return [
        start_dir.resolve() / CONFIG_FILENAME,
        Path(user_config_dir(APP_NAME)) / CONFIG_FILENAME,
    ]


def load_config(path: Optional[Path] = None, start_dir: Path = Path(".")) -> LauncherConfig:
    """Load configuration from path, or the first runexpo.toml found."""
    if path is not None:
        if not path.exists():
            raise ConfigError(f"Config file not found: {path}")
        return LauncherConfig.load(path)

    for candidate in config_search_paths(start_dir):
        if candidate.exists():
            return LauncherConfig.load(candidate)

    return LauncherConfig().apply_env()


__all__ = [
    "RuntimeConfig",
    "ToolsConfig",
    "ServerConfig",
    "PreviewConfig",
    "LauncherConfig",
    "config_search_paths",
    "load_config",
    "readiness_timeout",
]
