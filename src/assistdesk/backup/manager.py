"""
Backup and restore manager for assistdesk.

Ties the archive builder and reader to the history store. Exports produce a
ZIP archive at a user-chosen path; imports read an archive (or a legacy JSON
export) and either replace the store or append to it.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path

from assistdesk.backup.archive import (
    ARCHIVE_EXTENSION,
    ArchiveBuilder,
    ArchiveReader,
    ReadResult,
)
from assistdesk.backup.merger import MergeResult, RecordMerger
from assistdesk.backup.paths import Environment
from assistdesk.backup.prompts import PathPrompt
from assistdesk.backup.replacer import DEFAULT_BACKUP_SUFFIX, ConfigReplacer
from assistdesk.config.settings import Settings
from assistdesk.errors import BackupError, FileSystemError, UserCancelled
from assistdesk.storage.attachments import FILES_DIRNAME
from assistdesk.storage.history_store import HistoryStore
from assistdesk.storage.models import parse_snapshot

logger = logging.getLogger(__name__)


class ImportMode(str, Enum):
    """How an imported payload is applied to the store."""

    REPLACE = "replace"
    APPEND = "append"


@dataclass
class ExportResult:
    """Result of an export operation."""

    cancelled: bool = False
    path: Path | None = None
    size_bytes: int = 0
    agent_count: int = 0


@dataclass
class ImportResult:
    """Result of an import operation."""

    cancelled: bool = False
    mode: ImportMode | None = None
    source: Path | None = None
    legacy: bool = False
    agent_count: int = 0
    files_copied: int = 0
    backup_created: Path | None = None
    merge: MergeResult | None = None


def default_export_name() -> str:
    timestamp = datetime.now().strftime("%Y%m%d-%H%M%S")
    return f"assistdesk-export-{timestamp}{ARCHIVE_EXTENSION}"


class BackupManager:
    """
    Export and import of the assistant history.

    All store access goes through ``store.lock``, so one manager per store
    serializes its imports and exports.

    Usage:
        manager = BackupManager.from_settings(load_config())

        # Export everything
        manager.export_all(StaticPathPrompt(Path("backup.zip")))

        # Import and append
        manager.import_archive(StaticPathPrompt(Path("backup.zip")), ImportMode.APPEND)
    """

    def __init__(
        self,
        store: HistoryStore,
        files_root: Path,
        environment: Environment | None = None,
        backup_suffix: str = DEFAULT_BACKUP_SUFFIX,
    ) -> None:
        """
        Initialize backup manager.

        Args:
            store: History store to export from and import into.
            files_root: Absolute attachment-files root.
            environment: User name and temp directory; detected if omitted.
            backup_suffix: Suffix of the single backup generation kept on
                full imports.
        """
        self.store = store
        self.files_root = Path(files_root)
        self.environment = environment or Environment.detect()
        self.builder = ArchiveBuilder(self.environment.user_name)
        self.reader = ArchiveReader(self.files_root, self.environment)
        self.replacer = ConfigReplacer(store, backup_suffix)
        self.merger = RecordMerger(store)

    @classmethod
    def from_settings(cls, settings: Settings) -> BackupManager:
        user_data = settings.user_data_path
        return cls(
            store=HistoryStore.for_user_data(user_data),
            files_root=user_data / FILES_DIRNAME,
            environment=Environment.detect(settings.staging_path),
            backup_suffix=settings.backup.backup_suffix,
        )

    # Export

    def export_all(self, prompt: PathPrompt) -> ExportResult:
        """Export every agent, the title settings and all attachment files."""
        return self._export(prompt, selected_ids=None, include_history=True)

    def export_selected(
        self,
        prompt: PathPrompt,
        selected_ids: Iterable[int],
        include_history: bool = True,
    ) -> ExportResult:
        """Export the selected agents and their attachments, without title settings."""
        return self._export(
            prompt, selected_ids=list(selected_ids), include_history=include_history
        )

    def _export(
        self,
        prompt: PathPrompt,
        selected_ids: list[int] | None,
        include_history: bool,
    ) -> ExportResult:
        name = default_export_name()
        dest = self._ask(lambda: prompt.choose_save_path(name))
        if dest is None:
            logger.info("Export cancelled")
            return ExportResult(cancelled=True)
        if dest.is_dir():
            dest = dest / name

        try:
            with self.store.lock:
                snapshot = self.store.snapshot()

            if selected_ids is None:
                data = self.builder.build_full(snapshot, self.files_root)
                agent_count = len(snapshot.agents)
            else:
                data = self.builder.build_partial(
                    snapshot, selected_ids, self.files_root, include_history
                )
                agent_count = len(snapshot.select(selected_ids).agents)

            try:
                dest.parent.mkdir(parents=True, exist_ok=True)
                dest.write_bytes(data)
            except OSError as e:
                raise FileSystemError(f"Cannot write export {dest}: {e}") from e
        except BackupError:
            logger.exception("Export failed")
            raise

        logger.info(f"Export created: {dest} ({len(data):,} bytes, {agent_count} agents)")
        return ExportResult(path=dest, size_bytes=len(data), agent_count=agent_count)

    # Import

    def import_archive(self, prompt: PathPrompt, mode: ImportMode) -> ImportResult:
        """
        Ask for an import file, read it and apply it in the given mode.

        Cancellation returns before anything is read or written. Files from
        the archive are copied before the store is updated; a failure in
        between leaves those files in place.
        """
        source = self._ask(prompt.choose_open_path)
        if source is None:
            logger.info("Import cancelled")
            return ImportResult(cancelled=True)

        with self.store.lock:
            read = self.read_import(source)
            result = self.apply_import(read.config_text, mode)

        result.source = source
        result.legacy = read.legacy
        result.files_copied = len(read.files_copied)
        return result

    def read_import(self, path: Path) -> ReadResult:
        """Read an import file and copy its attachments into the files root."""
        try:
            with self.store.lock:
                return self.reader.read(path)
        except BackupError:
            logger.exception(f"Reading import file {path} failed")
            raise

    def apply_import(self, config_text: str, mode: ImportMode) -> ImportResult:
        """
        Apply config text read by read_import.

        Raises:
            MalformedPayload: If the text is not a valid snapshot.
            FileSystemError: If the store cannot be written.
        """
        mode = ImportMode(mode)
        try:
            snapshot = parse_snapshot(config_text)
            with self.store.lock:
                if mode is ImportMode.REPLACE:
                    backup = self.replacer.replace(config_text)
                    return ImportResult(
                        mode=mode,
                        agent_count=len(snapshot.agents),
                        backup_created=backup,
                    )

                merge = self.merger.merge(config_text)
                return ImportResult(mode=mode, agent_count=merge.added, merge=merge)
        except BackupError:
            logger.exception(f"Import ({mode.value}) failed")
            raise

    @staticmethod
    def _ask(question: Callable[[], Path | None]) -> Path | None:
        try:
            answer = question()
        except UserCancelled:
            return None
        return Path(answer) if answer is not None else None
