"""
Exceptions shared by the storage and backup layers.

All errors derive from BackupError so callers can catch the whole family.
UserCancelled is part of the hierarchy for prompts that prefer raising over
returning None; BackupManager turns it into a cancelled result.
"""

from __future__ import annotations


class BackupError(Exception):
    """Base exception for backup and restore errors."""

    pass


class UserCancelled(BackupError):
    """The user dismissed a path-selection prompt."""

    pass


class StructuralError(BackupError):
    """The archive does not have the expected layout."""

    pass


class MissingArchiveMember(StructuralError):
    """The archive lacks the required config entry."""

    def __init__(self, member: str) -> None:
        super().__init__(f"Archive is missing required entry: {member}")
        self.member = member


class MalformedPayload(BackupError):
    """A config payload could not be parsed or has the wrong shape."""

    pass


class FileSystemError(BackupError):
    """A read, write, rename or copy failed."""

    pass
