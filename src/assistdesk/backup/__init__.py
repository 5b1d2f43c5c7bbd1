"""
Backup and restore functionality for assistdesk.

This module exports the assistant history (agents, title settings and
attached files) into a single portable ZIP archive and imports such archives
back, either replacing the current store or appending to it. Absolute
attachment paths are rewritten with a ``${USERNAME}`` placeholder so an
archive made under one account restores under another.

Usage:
    from assistdesk.backup import BackupManager, ImportMode, StaticPathPrompt

    manager = BackupManager(store, files_root)

    # Export all agents
    result = manager.export_all(StaticPathPrompt(Path("export.zip")))

    # Export two agents without their conversations
    result = manager.export_selected(prompt, [1, 2], include_history=False)

    # Import, appending to the current agents
    result = manager.import_archive(prompt, ImportMode.APPEND)
"""

from assistdesk.backup.archive import (
    ARCHIVE_EXTENSION,
    CONFIG_ENTRY,
    FILES_PREFIX,
    ArchiveBuilder,
    ArchiveReader,
    ReadResult,
)
from assistdesk.backup.manager import (
    BackupManager,
    ExportResult,
    ImportMode,
    ImportResult,
)
from assistdesk.backup.merger import IdAllocator, MergeResult, RecordMerger
from assistdesk.backup.paths import USER_TOKEN, Environment, PathTokenizer
from assistdesk.backup.prompts import ConsolePrompt, PathPrompt, StaticPathPrompt
from assistdesk.backup.replacer import ConfigReplacer
from assistdesk.errors import (
    BackupError,
    FileSystemError,
    MalformedPayload,
    MissingArchiveMember,
    StructuralError,
    UserCancelled,
)

__all__ = [
    # Facade
    "BackupManager",
    "ImportMode",
    "ExportResult",
    "ImportResult",
    # Components
    "PathTokenizer",
    "Environment",
    "USER_TOKEN",
    "ArchiveBuilder",
    "ArchiveReader",
    "ReadResult",
    "ConfigReplacer",
    "RecordMerger",
    "MergeResult",
    "IdAllocator",
    "ARCHIVE_EXTENSION",
    "CONFIG_ENTRY",
    "FILES_PREFIX",
    # Prompts
    "PathPrompt",
    "StaticPathPrompt",
    "ConsolePrompt",
    # Exceptions
    "BackupError",
    "UserCancelled",
    "StructuralError",
    "MissingArchiveMember",
    "MalformedPayload",
    "FileSystemError",
]
