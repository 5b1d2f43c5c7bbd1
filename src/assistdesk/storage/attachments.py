"""
Attachment files owned by this installation.

Files a user attaches to an agent are copied into ``<user_data_dir>/files`` and
the agent records the absolute path of the copy. Exports pick attachments up
from this root and imports copy them back into it.
"""

from __future__ import annotations

import base64
import logging
import os
import shutil
from pathlib import Path

from assistdesk.errors import FileSystemError

logger = logging.getLogger(__name__)

FILES_DIRNAME = "files"


def _normalized(path: Path) -> Path:
    return Path(os.path.normpath(Path(path).absolute()))


def relative_to_root(path: Path, root: Path) -> Path | None:
    """
    Return path relative to root, or None if it lies outside.

    Both sides are made absolute and normalized first, so ``..`` components
    cannot climb out of root.
    """
    try:
        return _normalized(path).relative_to(_normalized(root))
    except ValueError:
        return None


def is_within(path: Path, root: Path) -> bool:
    """Check whether path lies under root."""
    return relative_to_root(path, root) is not None


class AttachmentStore:
    """
    Manages the attachment-files root.

    Attributes:
        files_root: Directory holding attached files.
    """

    def __init__(self, files_root: Path) -> None:
        self.files_root = Path(files_root)

    @classmethod
    def for_user_data(cls, user_data_dir: Path) -> AttachmentStore:
        return cls(Path(user_data_dir) / FILES_DIRNAME)

    def add_file(self, source: Path) -> Path:
        """
        Copy a user file into the files root.

        The copy keeps the source's base name; an existing file with that
        name is overwritten.

        Args:
            source: File to attach.

        Returns:
            Absolute path of the copy.

        Raises:
            FileSystemError: If the source is missing or the copy fails.
        """
        source = Path(source)
        if not source.is_file():
            raise FileSystemError(f"Attachment source not found: {source}")

        dest = self.files_root.absolute() / source.name
        try:
            self.files_root.mkdir(parents=True, exist_ok=True)
            shutil.copy2(source, dest)
        except OSError as e:
            logger.error(f"Failed to copy attachment {source}: {e}")
            raise FileSystemError(f"Failed to copy attachment {source}: {e}") from e

        logger.info(f"Attached {source} as {dest}")
        return dest

    def read_base64(self, path: Path) -> str | None:
        """Read a file and return its content base64-encoded, or None if unreadable."""
        try:
            data = Path(path).read_bytes()
        except OSError as e:
            logger.warning(f"Failed to read attachment {path}: {e}")
            return None
        return base64.b64encode(data).decode("ascii")

    def delete(self, path: Path) -> bool:
        """
        Delete an attachment.

        Only files under the files root are deleted.

        Returns:
            True if a file was removed.
        """
        path = Path(path)
        if not is_within(path, self.files_root):
            logger.warning(f"Refusing to delete file outside {self.files_root}: {path}")
            return False
        if not path.is_file():
            return False
        try:
            path.unlink()
        except OSError as e:
            logger.error(f"Failed to delete attachment {path}: {e}")
            return False
        return True

    def list_files(self) -> list[Path]:
        """All files under the root, sorted."""
        if not self.files_root.is_dir():
            return []
        return sorted(p for p in self.files_root.rglob("*") if p.is_file())
