from __future__ import annotations

import hashlib
import logging
import os
import platform
import shutil
import stat
import sys
from pathlib import Path
from typing import Optional

from platformdirs import user_downloads_dir

from .errors import (
    DirectoryCreationFailure,
    ExtractionFailure,
    MissingBundledResource,
    RunExpoError,
)
from .process import CommandSpec, build_env, run_command

RUNTIME_NAME = "node"
PACKAGE_MANAGER_NAME = "bun"


def platform_tag() -> str:
    """Return platform tag for archive selection (e.g., linux-x86_64, macos-aarch64)."""
    sysname = sys.platform
    arch = platform.machine().lower()
    # Normalize common arch names
    if arch in ("x86_64", "amd64"):
        arch = "x86_64"
    elif arch in ("aarch64", "arm64"):
        arch = "aarch64"

    if sysname.startswith("linux"):
        os_tag = "linux"
    elif sysname == "darwin":
        os_tag = "macos"
    elif sysname.startswith("win"):
        os_tag = "windows"
    else:
        os_tag = sysname
    return f"{os_tag}-{arch}"


def resources_dir() -> Path:
    """Return the directory holding resources bundled with the app."""
    # PyInstaller unpacks data files under sys._MEIPASS
    if getattr(sys, "frozen", False):
        return Path(getattr(sys, "_MEIPASS")) / "runexpo" / "resources"
    return Path(__file__).parent / "resources"


def downloads_dir() -> Path:
    """Return the user's downloads directory."""
    return Path(user_downloads_dir())


def default_install_path() -> Path:
    """Return where the runtime is provisioned by default: <downloads>/node."""
    return downloads_dir() / RUNTIME_NAME


def runtime_bin_dir(install_path: Path) -> Path:
    return install_path / "bin"


def runtime_executable(install_path: Path) -> Path:
    name = RUNTIME_NAME + (".exe" if sys.platform.startswith("win") else "")
    return runtime_bin_dir(install_path) / name


def ensure_executable(p: Path) -> None:
    """Make file executable on Unix systems.

    Bundled binaries can lose their mode bits when the app is packaged.
    """
    if sys.platform.startswith("win"):
        return
    mode = p.stat().st_mode
    p.chmod(
        mode
        | stat.S_IRUSR
        | stat.S_IXUSR
        | stat.S_IRGRP
        | stat.S_IXGRP
        | stat.S_IROTH
        | stat.S_IXOTH
    )


def verify_checksum(file_path: Path, expected_sha256: Optional[str]) -> bool:
    """Verify SHA256 checksum of an archive."""
    if not expected_sha256:
        return True  # Skip verification if no checksum provided

    sha256 = hashlib.sha256()
    with open(file_path, "rb") as f:
        for chunk in iter(lambda: f.read(8192), b""):
            sha256.update(chunk)

    actual = sha256.hexdigest()
    return actual.lower() == expected_sha256.lower()


def _read_sidecar_checksum(archive: Path) -> Optional[str]:
    """Return the hash from ``<archive>.sha256`` if present.

    Format: "<hash>  <filename>" or just "<hash>".
    """
    sidecar = archive.with_name(archive.name + ".sha256")
    if not sidecar.exists():
        return None
    parts = sidecar.read_text(encoding="utf-8").split()
    return parts[0] if parts else None


def find_bundled_archive(archive: Optional[Path] = None) -> Path:
    """Locate the runtime archive.

    Search order: explicit ``archive``, RUNEXPO_NODE_ARCHIVE, then the bundled
    resources directory (``node-<platform_tag>.tar.gz``, then ``node.tar.gz``).

    Raises:
        MissingBundledResource: no archive found.
    """
    candidates: list[Path] = []
    if archive is not None:
        candidates.append(archive)
    elif os.environ.get("RUNEXPO_NODE_ARCHIVE"):
        candidates.append(Path(os.environ["RUNEXPO_NODE_ARCHIVE"]))
    else:
        res = resources_dir()
        candidates.extend(
            [
                res / f"{RUNTIME_NAME}-{platform_tag()}.tar.gz",
                res / f"{RUNTIME_NAME}.tar.gz",
            ]
        )

    for c in candidates:
        if c.is_file():
            return c
    raise MissingBundledResource(
        "No bundled node found in app (looked in: "
        + ", ".join(str(c) for c in candidates)
        + ")"
    )


def find_package_manager(configured: Optional[Path] = None) -> Path:
    """Locate the bun binary.

    Priority order:
    1. ``configured`` (runexpo.toml [tools] package_manager)
    2. RUNEXPO_BUN
    3. bun bundled in resources/
    4. bun on PATH

    Raises:
        MissingBundledResource: bun is not found.
    """
    if configured is not None:
        if configured.is_file():
            return configured
        raise MissingBundledResource(f"bun is not found at {configured}")

    if os.environ.get("RUNEXPO_BUN"):
        env_bun = Path(os.environ["RUNEXPO_BUN"])
        if env_bun.is_file():
            return env_bun
        raise MissingBundledResource(f"bun is not found at {env_bun}")

    name = PACKAGE_MANAGER_NAME + (".exe" if sys.platform.startswith("win") else "")
    bundled = resources_dir() / name
    if bundled.is_file():
        try:
            ensure_executable(bundled)
        except OSError as e:
            raise MissingBundledResource(f"bun at {bundled} is not usable: {e}") from e
        return bundled

    on_path = shutil.which(PACKAGE_MANAGER_NAME)
    if on_path:
        return Path(on_path)

    raise MissingBundledResource("bun is not found")


def tar_command(archive: Path, install_path: Path) -> CommandSpec:
    """Return the tar invocation that unpacks ``archive`` into ``install_path``."""
    tar = shutil.which("tar") or "/usr/bin/tar"
    return CommandSpec(
        executable=tar,
        args=("--strip-components", "1", "-xzf", str(archive), "-C", str(install_path)),
        env=build_env(None),
        capture_output=True,
    )


async def provision_runtime(install_path: Path, archive: Optional[Path] = None) -> Path:
    """Make sure a runtime is installed at ``install_path``; return its bin dir.

    Extraction happens at most once: if ``bin/node`` already exists nothing
    is spawned. A failed extraction is not rolled back, the directory may be
    left partially populated.

    Raises:
        MissingBundledResource, DirectoryCreationFailure, ExtractionFailure,
        SpawnFailure
    """
    if runtime_executable(install_path).exists():
        logging.info("[runexpo] Node.js already exists at %s", install_path)
        return runtime_bin_dir(install_path)

    source = find_bundled_archive(archive)

    try:
        expected = _read_sidecar_checksum(source)
        checksum_ok = verify_checksum(source, expected)
    except OSError as e:
        raise ExtractionFailure(f"Cannot read {source} for verification: {e}") from e
    if not checksum_ok:
        raise ExtractionFailure(f"Checksum verification failed for {source}")

    try:
        install_path.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise DirectoryCreationFailure(f"Cannot create {install_path}: {e}") from e

    logging.info("[runexpo] Extracting Node.js bundle %s -> %s", source, install_path)
    result = await run_command(tar_command(source, install_path))
    if not result.success:
        raise ExtractionFailure(
            f"Extraction failed: {result.exit_code}", exit_code=result.exit_code
        )

    node = runtime_executable(install_path)
    if node.exists():
        try:
            ensure_executable(node)
        except OSError as e:
            raise ExtractionFailure(f"Cannot make {node} executable: {e}") from e
    logging.info("[runexpo] Node.js bundle extracted")
    return runtime_bin_dir(install_path)


async def ensure_runtime(install_path: Path, archive: Optional[Path] = None) -> bool:
    """Boolean form of provision_runtime(): True iff the runtime is usable."""
    try:
        await provision_runtime(install_path, archive)
    except RunExpoError as e:
        logging.error("[runexpo] Cannot extract node: %s", e)
        return False
    return True


__all__ = [
    "platform_tag",
    "resources_dir",
    "downloads_dir",
    "default_install_path",
    "runtime_bin_dir",
    "runtime_executable",
    "verify_checksum",
    "find_bundled_archive",
    "find_package_manager",
    "provision_runtime",
    "ensure_runtime",
]
