from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import Optional

from .config import LauncherConfig, load_config, readiness_timeout
from .dialogs import TkDirectoryDialog, choose_create_directory, choose_project_directory
from .errors import NoDirectorySelected, RunExpoError
from .orchestrator import SequenceStatus
from .tracing import init_telemetry, shutdown_telemetry, telemetry_requested

EXIT_FAILED = 1
EXIT_NO_DIRECTORY = 2


def _print_status(status: SequenceStatus) -> None:
    if status.is_failed:
        print(f"[runexpo] ✗ {status.stage.value}: {status.message}")
    elif status.is_ready:
        print(f"[runexpo] ✓ {status.message}")
    else:
        first_line = status.message.strip().splitlines()[0] if status.message.strip() else ""
        print(f"[runexpo] {first_line}")


def _load(args) -> LauncherConfig:
    config = load_config(Path(args.config) if args.config else None)
    if getattr(args, "port", None):
        config.server.port = args.port
    if getattr(args, "timeout", None) is not None:
        config.server.readiness_timeout_sec = readiness_timeout(args.timeout)
    return config


def _setup(args) -> None:
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s - %(levelname)s - %(message)s",
    )
    if telemetry_requested(args.trace):
        init_telemetry()


def _teardown(args) -> None:
    if telemetry_requested(args.trace):
        shutdown_telemetry()


def _run_sequence(args, fresh: bool) -> int:
    from .app import LauncherApp

    config = _load(args)

    directory: Optional[Path] = Path(args.path).expanduser() if args.path else None
    if directory is None:
        dialog = TkDirectoryDialog()
        try:
            directory = (
                choose_create_directory(dialog) if fresh else choose_project_directory(dialog)
            )
        except NoDirectorySelected as e:
            print(f"[runexpo] No directory selected ({e})")
            return EXIT_NO_DIRECTORY
    directory = directory.resolve()
    print(f"[runexpo] Project directory: {directory}")

    with LauncherApp(config) as app:
        app.on_status(_print_status)
        try:
            status = app.create_project(directory) if fresh else app.open_project(directory)
        except KeyboardInterrupt:
            print("[runexpo] Cancelled")
            return EXIT_FAILED
        if not status.is_ready:
            return EXIT_FAILED

        if args.no_preview:
            print("[runexpo] Press Ctrl+C to stop.")
            try:
                app.wait_server()
            except KeyboardInterrupt:
                pass
        else:
            from .preview import show_preview

            show_preview(status.address, config.preview)

    return 0


def cmd_create(args) -> int:
    """Scaffold a new Expo project and open its web preview."""
    return _run_sequence(args, fresh=True)


def cmd_open(args) -> int:
    """Start the dev server of an existing project and open its web preview."""
    return _run_sequence(args, fresh=False)


def cmd_provision(args) -> int:
    """Extract the bundled Node.js runtime without starting anything."""
    from . import embedded

    config = _load(args)
    install_path = (
        Path(args.install_dir).expanduser()
        if args.install_dir
        else config.runtime.install_dir or embedded.default_install_path()
    )
    archive = Path(args.archive).expanduser() if args.archive else config.runtime.archive

    try:
        bin_dir = asyncio.run(embedded.provision_runtime(install_path, archive))
    except RunExpoError as e:
        print(f"[runexpo] Cannot extract node: {e}")
        return EXIT_FAILED
    print(f"[runexpo] Node.js ready at {bin_dir}")
    return 0


def _add_common(p: argparse.ArgumentParser) -> None:
    p.add_argument("--config", help="Path to runexpo.toml (default: search)")
    p.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    p.add_argument("--trace", action="store_true", help="Export OpenTelemetry traces")


def _add_sequence_args(p: argparse.ArgumentParser) -> None:
    p.add_argument("path", nargs="?", default=None, help="Project directory (default: ask)")
    p.add_argument("--port", type=int, default=None, help="Dev server port (default: 8081)")
    p.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Seconds to wait for the dev server URL, 0 = forever (default: 120)",
    )
    p.add_argument(
        "--no-preview",
        action="store_true",
        help="Do not open the preview window; keep the server running until Ctrl+C",
    )


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="runexpo", description="Bootstrap and preview Expo projects with a bundled runtime"
    )
    sub = p.add_subparsers(dest="cmd", required=True)

    sc = sub.add_parser("create", help="Create a new Expo project in PATH and preview it")
    _add_sequence_args(sc)
    _add_common(sc)
    sc.set_defaults(func=cmd_create)

    so = sub.add_parser("open", help="Preview an existing Expo project in PATH")
    _add_sequence_args(so)
    _add_common(so)
    so.set_defaults(func=cmd_open)

    sp = sub.add_parser("provision", help="Extract the bundled Node.js runtime")
    sp.add_argument("--install-dir", help="Install directory (default: <downloads>/node)")
    sp.add_argument("--archive", help="Runtime archive (default: bundled)")
    _add_common(sp)
    sp.set_defaults(func=cmd_provision)

    return p


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    _setup(args)
    try:
        return args.func(args)
    except RunExpoError as e:
        print(f"[runexpo] {e}")
        return EXIT_FAILED
    finally:
        _teardown(args)


if __name__ == "__main__":
    sys.exit(main())
