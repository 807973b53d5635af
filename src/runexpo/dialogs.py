"""Directory picker adapters decoupling the launcher from Tk."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from .errors import NoDirectorySelected


class DirectoryDialog(Protocol):
    """Interface for choosing a directory via a GUI or headless mechanism."""

    def ask_directory(self, message: str, must_exist: bool) -> str | None:
        """Return the chosen directory or ``None`` if the user cancelled."""


@dataclass(slots=True)
class TkDirectoryDialog:
    """Tk-backed dialog adapter using :mod:`tkinter.filedialog`."""

    title: str = "Select"

    def ask_directory(self, message: str, must_exist: bool) -> str | None:
        import tkinter as tk
        from tkinter import filedialog

        root = tk.Tk()
        root.withdraw()
        try:
            return filedialog.askdirectory(
                parent=root,
                title=message or self.title,
                mustexist=must_exist,
            )
        finally:
            root.destroy()


CREATE_MESSAGE = "Please select where to create expo project"
OPEN_MESSAGE = "Please select the directory of a previous Expo project"


def _resolve_choice(choice: str | None) -> Path:
    # Tk returns "" (or an empty tuple on some platforms) on cancel
    if not choice:
        raise NoDirectorySelected("User cancelled")
    path = Path(choice)
    if path == Path(path.anchor):
        raise NoDirectorySelected("User didn't select any directory")
    return path


def choose_create_directory(dialog: DirectoryDialog) -> Path:
    """Ask where a new project should be created."""
    return _resolve_choice(dialog.ask_directory(CREATE_MESSAGE, must_exist=False))


def choose_project_directory(dialog: DirectoryDialog) -> Path:
    """Ask for the directory of an existing project."""
    return _resolve_choice(dialog.ask_directory(OPEN_MESSAGE, must_exist=True))


__all__ = [
    "DirectoryDialog",
    "TkDirectoryDialog",
    "choose_create_directory",
    "choose_project_directory",
]
