"""
Tests for attachment file handling.
"""

import base64
import shutil
import tempfile
import unittest
from pathlib import Path

from assistdesk.errors import FileSystemError
from assistdesk.storage import AttachmentStore, is_within


class TestIsWithin(unittest.TestCase):
    """Tests for is_within."""

    def test_inside_and_outside(self):
        root = Path("/data/files")

        self.assertTrue(is_within(Path("/data/files/a.txt"), root))
        self.assertTrue(is_within(Path("/data/files/sub/b.txt"), root))
        self.assertFalse(is_within(Path("/data/other/a.txt"), root))
        self.assertFalse(is_within(Path("/data/files-old/a.txt"), root))


class TestAttachmentStore(unittest.TestCase):
    """Tests for AttachmentStore."""

    def setUp(self):
        """Create a user data directory and a source file."""
        self.temp_dir = tempfile.mkdtemp()
        self.attachments = AttachmentStore.for_user_data(Path(self.temp_dir) / "data")
        self.source = Path(self.temp_dir) / "report.txt"
        self.source.write_text("quarterly numbers")

    def tearDown(self):
        """Clean up temporary directory."""
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_add_file(self):
        """Test that a file is copied by base name into the root."""
        dest = self.attachments.add_file(self.source)

        self.assertEqual(dest, self.attachments.files_root.absolute() / "report.txt")
        self.assertEqual(dest.read_text(), "quarterly numbers")
        self.assertTrue(self.source.exists())

    def test_add_file_overwrites(self):
        """Test that re-attaching a file with the same name overwrites it."""
        self.attachments.add_file(self.source)
        self.source.write_text("revised")

        dest = self.attachments.add_file(self.source)

        self.assertEqual(dest.read_text(), "revised")
        self.assertEqual(len(self.attachments.list_files()), 1)

    def test_add_missing_file(self):
        """Test that a missing source raises FileSystemError."""
        with self.assertRaises(FileSystemError):
            self.attachments.add_file(Path(self.temp_dir) / "missing.txt")

    def test_read_base64(self):
        """Test base64 reading and the unreadable case."""
        dest = self.attachments.add_file(self.source)

        encoded = self.attachments.read_base64(dest)

        self.assertEqual(base64.b64decode(encoded), b"quarterly numbers")
        self.assertIsNone(self.attachments.read_base64(Path(self.temp_dir) / "nope"))

    def test_delete(self):
        """Test deleting an attachment."""
        dest = self.attachments.add_file(self.source)

        self.assertTrue(self.attachments.delete(dest))
        self.assertFalse(dest.exists())
        self.assertFalse(self.attachments.delete(dest))

    def test_delete_refuses_outside_root(self):
        """Test that files outside the root are never deleted."""
        self.assertFalse(self.attachments.delete(self.source))
        self.assertTrue(self.source.exists())

    def test_list_files_empty(self):
        """Test listing when the root does not exist."""
        self.assertEqual(self.attachments.list_files(), [])


if __name__ == "__main__":
    unittest.main()
