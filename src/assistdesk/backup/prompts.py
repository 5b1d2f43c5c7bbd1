"""
File-selection prompts.

The desktop UI asks the user where to save an export and which file to
import. The backup layer only sees the PathPrompt protocol: a chosen path,
or None when the user cancelled.
"""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path
from typing import Protocol


class PathPrompt(Protocol):
    """Asks the user for a path. None means the user cancelled."""

    def choose_save_path(self, default_name: str) -> Path | None: ...

    def choose_open_path(self) -> Path | None: ...


class StaticPathPrompt:
    """Answers every prompt with a fixed path (or None to cancel)."""

    def __init__(self, path: Path | None) -> None:
        self.path = Path(path) if path is not None else None

    def choose_save_path(self, default_name: str) -> Path | None:
        return self.path

    def choose_open_path(self) -> Path | None:
        return self.path


class ConsolePrompt:
    """
    Asks on the terminal. An empty answer cancels.

    For save prompts an answer naming an existing directory resolves to the
    default file name inside it.
    """

    def __init__(self, ask: Callable[[str], str] | None = None) -> None:
        self._ask = ask or input

    def choose_save_path(self, default_name: str) -> Path | None:
        answer = self._ask(f"Save export as [{default_name}] (empty to cancel): ").strip()
        if not answer:
            return None
        path = Path(answer).expanduser()
        if path.is_dir():
            path = path / default_name
        return path

    def choose_open_path(self) -> Path | None:
        answer = self._ask("File to import (empty to cancel): ").strip()
        if not answer:
            return None
        return Path(answer).expanduser()
