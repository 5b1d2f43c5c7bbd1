"""
Full-restore replacement of the canonical store file.

The previous file is kept as a single backup generation next to it
(``config.json.bak`` by default). Older backups are not chained.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from assistdesk.errors import FileSystemError, MalformedPayload
from assistdesk.storage.history_store import HistoryStore

logger = logging.getLogger(__name__)

DEFAULT_BACKUP_SUFFIX = ".bak"


class ConfigReplacer:
    """
    Swaps the store file for new content with one-generation backup rotation.

    There is no rollback beyond the rename: if the rename succeeds and the
    write fails, the canonical path stays absent until a later write
    succeeds. The backup file still holds the previous content.
    """

    def __init__(self, store: HistoryStore, backup_suffix: str = DEFAULT_BACKUP_SUFFIX) -> None:
        self.store = store
        self.backup_suffix = backup_suffix

    @property
    def backup_path(self) -> Path:
        return self.store.path.with_name(self.store.path.name + self.backup_suffix)

    def replace(self, config_text: str) -> Path | None:
        """
        Replace the store contents with config_text.

        Args:
            config_text: Detokenized config JSON.

        Returns:
            Path of the backup generation, or None if there was no previous file.

        Raises:
            MalformedPayload: If config_text is not a JSON object. Raised
                before any file is touched.
            FileSystemError: If the rename or the write fails.
        """
        data = self._parse(config_text)
        canonical = self.store.path

        with self.store.lock:
            backup: Path | None = None
            if canonical.exists():
                backup = self.backup_path
                self._discard_stale_backup(backup)
                try:
                    canonical.rename(backup)
                except OSError as e:
                    raise FileSystemError(f"Cannot rotate {canonical} to {backup}: {e}") from e
                logger.info(f"Previous store moved to {backup}")

            try:
                canonical.parent.mkdir(parents=True, exist_ok=True)
                canonical.write_text(config_text, encoding="utf-8")
            except OSError as e:
                raise FileSystemError(f"Cannot write {canonical}: {e}") from e

            self.store.replace_mirror(data)

        logger.info(f"Store replaced: {canonical}")
        return backup

    @staticmethod
    def _parse(config_text: str) -> dict[str, Any]:
        try:
            data = json.loads(config_text)
        except json.JSONDecodeError as e:
            raise MalformedPayload(f"Invalid JSON: {e}") from e
        if not isinstance(data, dict):
            raise MalformedPayload("Config payload is not a JSON object")
        return data

    @staticmethod
    def _discard_stale_backup(backup: Path) -> None:
        if not backup.exists():
            return
        try:
            backup.unlink()
        except OSError as e:
            # The rename below will then fail on Windows or overwrite on POSIX
            logger.warning(f"Could not remove stale backup {backup}: {e}")
