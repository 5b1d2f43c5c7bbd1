"""
Persisted key-value store for assistant history.

The store is a single JSON object on disk (``history/config.json`` under the
user data directory) mirrored in memory. Every ``set`` writes the whole object
back. The mirror is what the running process reads; the backup layer replaces
it after an import so changes are visible without a reload.

Callers that read, modify and write must hold ``store.lock``. There is one
lock per store file, shared by all HistoryStore instances on that path, and it is
re-entrant so helpers that take it can be called from code that already
holds it.
"""

from __future__ import annotations

import copy
import json
import logging
import threading
from collections.abc import Iterable
from pathlib import Path
from typing import Any

from assistdesk.errors import FileSystemError, MalformedPayload
from assistdesk.storage.models import AgentRecord, StoreSnapshot, TitleSettings

logger = logging.getLogger(__name__)

STORE_DIRNAME = "history"
STORE_FILENAME = "config.json"

DEFAULT_CONTENTS: dict[str, Any] = {"agents": []}

_LOCKS: dict[Path, threading.RLock] = {}
_LOCKS_GUARD = threading.Lock()


def lock_for(path: Path) -> threading.RLock:
    """Return the process-wide lock for the store file at path."""
    key = Path(path).absolute().resolve()
    with _LOCKS_GUARD:
        return _LOCKS.setdefault(key, threading.RLock())


class HistoryStore:
    """
    JSON-backed store holding agents, title settings and other UI keys.

    Usage:
        store = HistoryStore.for_user_data(Path("~/.assistdesk/data").expanduser())
        agents = store.load_agents()
        store.set("locale", "ja")

    Attributes:
        path: Canonical on-disk location of the store.
        lock: Re-entrant lock guarding read-modify-write of the file. Shared
            by every store opened on the same path in this process.
    """

    def __init__(self, path: Path) -> None:
        """
        Open the store, loading the file if it exists.

        Args:
            path: Canonical path of the JSON file.

        Raises:
            MalformedPayload: If the existing file is not a JSON object.
            FileSystemError: If the existing file cannot be read.
        """
        self.path = Path(path)
        self.lock = lock_for(self.path)
        self._data = self._load()

    @classmethod
    def for_user_data(cls, user_data_dir: Path) -> HistoryStore:
        """Open the store at its default location under user_data_dir."""
        return cls(Path(user_data_dir) / STORE_DIRNAME / STORE_FILENAME)

    @property
    def data(self) -> dict[str, Any]:
        """A deep copy of the in-memory mirror."""
        with self.lock:
            return copy.deepcopy(self._data)

    def exists(self) -> bool:
        return self.path.exists()

    def get(self, key: str, default: Any = None) -> Any:
        with self.lock:
            return copy.deepcopy(self._data.get(key, default))

    def set(self, key: str, value: Any) -> None:
        """Set a key and persist the whole store."""
        with self.lock:
            data = copy.deepcopy(self._data)
            data[key] = copy.deepcopy(value)
            self.save(data)

    def delete(self, key: str) -> None:
        with self.lock:
            if key not in self._data:
                return
            data = copy.deepcopy(self._data)
            del data[key]
            self.save(data)

    def save(self, data: dict[str, Any]) -> None:
        """
        Write data as the full store contents and update the mirror.

        Raises:
            FileSystemError: If the file cannot be written.
        """
        with self.lock:
            text = json.dumps(data, indent=2, ensure_ascii=False)
            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                self.path.write_text(text, encoding="utf-8")
            except OSError as e:
                logger.error(f"Cannot write store {self.path}: {e}")
                raise FileSystemError(f"Cannot write store {self.path}: {e}") from e
            self._data = copy.deepcopy(data)

    def replace_mirror(self, data: dict[str, Any]) -> None:
        """Replace the in-memory mirror without touching the file."""
        with self.lock:
            self._data = copy.deepcopy(data)

    def reload(self) -> None:
        """Re-read the file into the mirror."""
        with self.lock:
            self._data = self._load()

    # Typed helpers used by the UI and the backup layer

    def load_agents(self) -> list[AgentRecord]:
        return list(self.snapshot().agents)

    def save_agents(self, agents: Iterable[AgentRecord]) -> None:
        self.set("agents", [agent.to_dict() for agent in agents])

    def load_title_settings(self) -> TitleSettings | None:
        return self.snapshot().title_settings

    def save_title_settings(self, settings: TitleSettings) -> None:
        self.set("titleSettings", settings.to_dict())

    def snapshot(self) -> StoreSnapshot:
        """
        Build a validated snapshot of agents and title settings.

        Raises:
            MalformedPayload: If the stored records have the wrong shape.
        """
        with self.lock:
            return StoreSnapshot.from_dict(
                {
                    "agents": self._data.get("agents", []),
                    "titleSettings": self._data.get("titleSettings"),
                }
            )

    def _load(self) -> dict[str, Any]:
        if not self.path.exists():
            return copy.deepcopy(DEFAULT_CONTENTS)

        try:
            text = self.path.read_text(encoding="utf-8")
        except OSError as e:
            raise FileSystemError(f"Cannot read store {self.path}: {e}") from e

        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise MalformedPayload(f"Invalid JSON in store {self.path}: {e}") from e

        if not isinstance(data, dict):
            raise MalformedPayload(f"Store {self.path} does not contain a JSON object")

        merged = copy.deepcopy(DEFAULT_CONTENTS)
        merged.update(data)
        return merged
