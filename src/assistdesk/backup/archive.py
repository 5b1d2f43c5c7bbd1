"""
Archive packing and unpacking.

An export archive is a ZIP file with a fixed layout:

    history/config.json      UTF-8 JSON store snapshot, paths tokenized
    files/<relative path>    copies of the attachment-files root

ArchiveBuilder produces the archive bytes. ArchiveReader consumes an archive
(or a legacy bare JSON export), copies its files into the live files root and
hands the detokenized config text back to the caller, which decides between
a full replace and a merge.
"""

from __future__ import annotations

import io
import logging
import shutil
import tempfile
import zipfile
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath

from assistdesk.backup.paths import Environment, PathTokenizer
from assistdesk.errors import (
    FileSystemError,
    MalformedPayload,
    MissingArchiveMember,
    StructuralError,
)
from assistdesk.storage.attachments import relative_to_root
from assistdesk.storage.models import StoreSnapshot, dump_snapshot, parse_snapshot

logger = logging.getLogger(__name__)

ARCHIVE_EXTENSION = ".zip"
CONFIG_ENTRY = "history/config.json"
FILES_PREFIX = "files/"
ALLOWED_PREFIXES = ("history/", FILES_PREFIX)
STAGING_PREFIX = "assistdesk-import-"


def _through_symlink(path: Path, root: Path) -> bool:
    """True if path, or any directory between root and path, is a symlink."""
    current = root
    for part in path.relative_to(root).parts:
        current = current / part
        if current.is_symlink():
            return True
    return False


class ArchiveBuilder:
    """
    Builds export archives in memory.

    Usage:
        builder = ArchiveBuilder(user_name="alice")
        data = builder.build_full(store.snapshot(), files_root)
        partial = builder.build_partial(store.snapshot(), [2], files_root)
    """

    def __init__(self, user_name: str) -> None:
        self.user_name = user_name

    def build_full(self, snapshot: StoreSnapshot, files_root: Path) -> bytes:
        """
        Pack the whole snapshot and every regular file under files_root.

        Symlinks are skipped.

        Args:
            snapshot: Store snapshot to export.
            files_root: Attachment-files root. A missing root yields an
                archive with no file entries.

        Returns:
            The archive as bytes.

        Raises:
            MalformedPayload: If the snapshot has duplicate agent ids.
            FileSystemError: If a file under the root cannot be read.
        """
        snapshot.ensure_unique_ids()
        files_root = Path(files_root)
        files: dict[str, Path] = {}
        if files_root.is_dir():
            for path in sorted(files_root.rglob("*")):
                if path.is_file() and not _through_symlink(path, files_root):
                    files[path.relative_to(files_root).as_posix()] = path

        logger.debug(f"Full export: {len(snapshot.agents)} agents, {len(files)} files")
        return self._pack(snapshot, files_root, files)

    def build_partial(
        self,
        snapshot: StoreSnapshot,
        selected_ids: Iterable[int],
        files_root: Path,
        include_history: bool = True,
    ) -> bytes:
        """
        Pack only the selected agents and the files they reference.

        Title settings are never part of a partial export. Referenced
        paths outside files_root (after normalizing ..), symlinks and
        paths missing on disk are skipped.

        Args:
            snapshot: Store snapshot to export from.
            selected_ids: Ids of the agents to keep.
            files_root: Attachment-files root.
            include_history: If False, agents are exported with empty
                conversation and outbound buffer.

        Returns:
            The archive as bytes.
        """
        snapshot.ensure_unique_ids()
        files_root = Path(files_root)
        selected = snapshot.select(selected_ids)
        if not include_history:
            selected = StoreSnapshot(agents=tuple(a.without_history() for a in selected.agents))

        files: dict[str, Path] = {}
        for agent in selected.agents:
            for raw_path in agent.agent_file_paths:
                path = Path(raw_path)
                rel = relative_to_root(path, files_root)
                if (
                    rel is None
                    or not path.is_file()
                    or _through_symlink(files_root / rel, files_root)
                ):
                    logger.debug(f"Skipping attachment outside export set: {raw_path}")
                    continue
                files.setdefault(rel.as_posix(), path)

        logger.debug(f"Partial export: {len(selected.agents)} agents, {len(files)} files")
        return self._pack(selected, files_root, files)

    def _pack(self, snapshot: StoreSnapshot, files_root: Path, files: dict[str, Path]) -> bytes:
        tokenized = PathTokenizer(files_root, self.user_name).tokenize(snapshot)
        buffer = io.BytesIO()
        try:
            with zipfile.ZipFile(buffer, "w", zipfile.ZIP_DEFLATED) as zf:
                zf.writestr(CONFIG_ENTRY, dump_snapshot(tokenized).encode("utf-8"))
                zf.writestr(FILES_PREFIX, b"")
                for rel, source in files.items():
                    zf.write(source, FILES_PREFIX + rel)
        except OSError as e:
            raise FileSystemError(f"Cannot add file to archive: {e}") from e
        return buffer.getvalue()


@dataclass
class ReadResult:
    """
    Result of reading an import file.

    Attributes:
        config_text: Detokenized config JSON (verbatim content for legacy files).
        files_copied: Files written into the files root.
        legacy: True if the input was a bare JSON file.
    """

    config_text: str
    files_copied: list[Path] = field(default_factory=list)
    legacy: bool = False


class ArchiveReader:
    """
    Reads export archives and legacy JSON exports.

    Each archive is extracted into its own staging directory, which is
    removed on every exit path.
    """

    def __init__(self, files_root: Path, environment: Environment) -> None:
        self.files_root = Path(files_root)
        self.environment = environment

    def read(self, path: Path) -> ReadResult:
        """
        Read an import file.

        Files without the archive extension are returned verbatim as legacy
        payloads. Archives are validated before anything is copied into the
        files root.

        Args:
            path: File chosen by the user.

        Returns:
            ReadResult with the config text to apply.

        Raises:
            StructuralError: If the archive is not a ZIP or has unexpected entries.
            MissingArchiveMember: If the archive has no config entry.
            MalformedPayload: If the config entry is not a valid snapshot.
            FileSystemError: If reading, extracting or copying fails.
        """
        path = Path(path)
        if path.suffix.lower() != ARCHIVE_EXTENSION:
            return ReadResult(config_text=self._read_legacy(path), legacy=True)

        try:
            staging = Path(tempfile.mkdtemp(prefix=STAGING_PREFIX, dir=self.environment.temp_dir))
        except OSError as e:
            raise FileSystemError(f"Cannot create staging directory: {e}") from e

        try:
            self._extract(path, staging)

            config_path = staging / CONFIG_ENTRY
            if not config_path.is_file():
                raise MissingArchiveMember(CONFIG_ENTRY)

            snapshot = parse_snapshot(self._decode(config_path.read_bytes(), CONFIG_ENTRY))
            snapshot = PathTokenizer(self.files_root, self.environment.user_name).detokenize(
                snapshot
            )

            copied = self._copy_files(staging / FILES_PREFIX.rstrip("/"))
            logger.info(f"Read archive {path}: {len(snapshot.agents)} agents, {len(copied)} files")
            return ReadResult(config_text=dump_snapshot(snapshot), files_copied=copied)
        finally:
            self._remove_staging(staging)

    def _read_legacy(self, path: Path) -> str:
        try:
            data = path.read_bytes()
        except OSError as e:
            raise FileSystemError(f"Cannot read import file {path}: {e}") from e
        logger.info(f"Read legacy JSON export {path}")
        return self._decode(data, str(path))

    @staticmethod
    def _decode(data: bytes, name: str) -> str:
        try:
            return data.decode("utf-8")
        except UnicodeDecodeError as e:
            raise MalformedPayload(f"{name} is not valid UTF-8: {e}") from e

    def _extract(self, path: Path, staging: Path) -> None:
        try:
            with zipfile.ZipFile(path) as zf:
                for name in zf.namelist():
                    self._check_member(name)
                zf.extractall(staging)
        except zipfile.BadZipFile as e:
            raise StructuralError(f"Not a valid archive: {path}") from e
        except OSError as e:
            raise FileSystemError(f"Cannot extract archive {path}: {e}") from e

    @staticmethod
    def _check_member(name: str) -> None:
        member = PurePosixPath(name.replace("\\", "/"))
        if member.is_absolute() or ".." in member.parts:
            raise StructuralError(f"Unsafe archive entry: {name}")
        if not name.startswith(ALLOWED_PREFIXES):
            raise StructuralError(f"Unexpected archive entry: {name}")

    def _copy_files(self, source_root: Path) -> list[Path]:
        """Copy extracted files into the files root, overwriting existing ones."""
        if not source_root.is_dir():
            return []

        copied: list[Path] = []
        try:
            for source in sorted(source_root.rglob("*")):
                if not source.is_file():
                    continue
                dest = self.files_root / source.relative_to(source_root)
                dest.parent.mkdir(parents=True, exist_ok=True)
                shutil.copy2(source, dest)
                copied.append(dest)
        except OSError as e:
            raise FileSystemError(f"Cannot copy imported files into {self.files_root}: {e}") from e
        return copied

    @staticmethod
    def _remove_staging(staging: Path) -> None:
        try:
            shutil.rmtree(staging)
        except OSError as e:
            logger.warning(f"Could not remove staging directory {staging}: {e}")
        else:
            logger.debug(f"Removed staging directory {staging}")
