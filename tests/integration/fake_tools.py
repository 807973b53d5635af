"""
Helper module that writes fake bun / node / npx executables for tests.

The fakes are tiny /bin/sh scripts. Spawned tools only see PATH and HOME, so
everything a fake needs (its log file, exit codes) is baked into its text.
"""

import stat
from pathlib import Path
from typing import Optional

BUN_TEMPLATE = """#!/bin/sh
echo "bun $*" >> "{log}"
case "$1" in
  create)
    mkdir -p "$5"
    echo "done"
    exit {create_exit}
    ;;
  install)
    echo "installed $(pwd)"
    exit {install_exit}
    ;;
esac
exit 0
"""

NPX_TEMPLATE = """#!/bin/sh
echo "npx $* CI=$CI BROWSER=$BROWSER cwd=$(pwd)" >> "{log}"
sleep {delay}
echo "{banner}"
exec sleep {lifetime}
"""


def _write_script(path: Path, text: str) -> Path:
    path.write_text(text)
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return path


class FakeToolbox:
    """A fake provisioned runtime (bin/node, bin/npx) plus a fake bun."""

    def __init__(self, root: Path):
        self.root = root
        self.root.mkdir(parents=True, exist_ok=True)
        self.log = root / "calls.log"
        self.log.touch()
        self.install_path = root / "node"
        self.bin_dir = self.install_path / "bin"
        self.bun: Optional[Path] = None

    def write_bun(self, create_exit: int = 0, install_exit: int = 0) -> Path:
        self.bun = _write_script(
            self.root / "bun",
            BUN_TEMPLATE.format(
                log=self.log, create_exit=create_exit, install_exit=install_exit
            ),
        )
        return self.bun

    def write_runtime(
        self,
        banner: str = "Server running at http://localhost:8081",
        delay: float = 0.2,
        lifetime: int = 30,
    ) -> Path:
        self.bin_dir.mkdir(parents=True, exist_ok=True)
        _write_script(self.bin_dir / "node", "#!/bin/sh\nexit 0\n")
        _write_script(
            self.bin_dir / "npx",
            NPX_TEMPLATE.format(log=self.log, delay=delay, banner=banner, lifetime=lifetime),
        )
        return self.install_path

    def calls(self) -> list[str]:
        return [line for line in self.log.read_text().splitlines() if line]
