"""
Tests for archive building and reading.

Tests cover:
- Full and partial archive layout
- Path tokenization inside archives
- Reading archives back, including cross-user restores
- Legacy JSON imports
- Structural and payload errors
- Staging directory cleanup on every exit path
"""

import io
import json
import os
import shutil
import tempfile
import unittest
import zipfile
from pathlib import Path
from unittest.mock import patch

from assistdesk.backup.archive import (
    CONFIG_ENTRY,
    FILES_PREFIX,
    ArchiveBuilder,
    ArchiveReader,
)
from assistdesk.backup.paths import USER_TOKEN, Environment
from assistdesk.errors import (
    FileSystemError,
    MalformedPayload,
    MissingArchiveMember,
    StructuralError,
)
from assistdesk.storage.models import (
    AgentRecord,
    StoreSnapshot,
    TitleSettings,
    parse_snapshot,
)


def file_entries(data):
    """Names of the file members of an archive, without directory entries."""
    with zipfile.ZipFile(io.BytesIO(data)) as zf:
        return sorted(name for name in zf.namelist() if not name.endswith("/"))


def archive_config(data):
    with zipfile.ZipFile(io.BytesIO(data)) as zf:
        return json.loads(zf.read(CONFIG_ENTRY).decode("utf-8"))


def write_zip(path, members):
    with zipfile.ZipFile(path, "w") as zf:
        for name, content in members.items():
            zf.writestr(name, content)


class ArchiveTestCase(unittest.TestCase):
    """Common fixture: a user data directory with a few attachments."""

    def setUp(self):
        self.temp_dir = Path(tempfile.mkdtemp())
        self.files_root = self.temp_dir / "alice" / "data" / "files"
        self.files_root.mkdir(parents=True)
        self.staging_root = self.temp_dir / "staging"
        self.staging_root.mkdir()

        (self.files_root / "one.txt").write_text("first agent file")
        (self.files_root / "two.txt").write_text("second agent file")
        (self.files_root / "sub").mkdir()
        (self.files_root / "sub" / "bg.png").write_bytes(b"\x89PNG")
        self.foreign = self.temp_dir / "elsewhere.txt"
        self.foreign.write_text("not owned")

        self.snapshot = StoreSnapshot(
            agents=(
                AgentRecord(
                    id=1,
                    custom_title="One",
                    messages=({"role": "user", "content": "hello"},),
                    agent_file_paths=(str(self.files_root / "one.txt"),),
                ),
                AgentRecord(
                    id=2,
                    custom_title="Two",
                    messages=({"role": "user", "content": "bye"},),
                    post_messages=({"role": "user", "content": "bye"},),
                    agent_file_paths=(
                        str(self.files_root / "two.txt"),
                        str(self.foreign),
                        str(self.files_root / "missing.txt"),
                    ),
                ),
            ),
            title_settings=TitleSettings(
                font_family="serif",
                background_image_path=str(self.files_root / "sub" / "bg.png"),
            ),
        )

        self.builder = ArchiveBuilder(user_name="alice")
        self.environment = Environment(user_name="alice", temp_dir=self.staging_root)

    def tearDown(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def assertStagingEmpty(self):
        self.assertEqual(list(self.staging_root.iterdir()), [])


class TestArchiveBuilder(ArchiveTestCase):
    """Tests for ArchiveBuilder."""

    def test_build_full_layout(self):
        """Test that a full archive holds the config and every root file."""
        data = self.builder.build_full(self.snapshot, self.files_root)

        self.assertEqual(
            file_entries(data),
            ["files/one.txt", "files/sub/bg.png", "files/two.txt", CONFIG_ENTRY],
        )
        with zipfile.ZipFile(io.BytesIO(data)) as zf:
            self.assertIn(FILES_PREFIX, zf.namelist())
            self.assertEqual(zf.read("files/one.txt"), b"first agent file")

    def test_build_full_tokenizes_paths(self):
        """Test that owned paths carry the user token and foreign ones do not."""
        config = archive_config(self.builder.build_full(self.snapshot, self.files_root))

        token_root = str(self.files_root).replace("/alice/", f"/{USER_TOKEN}/")
        self.assertEqual(config["agents"][0]["agentFilePaths"], [f"{token_root}/one.txt"])
        self.assertEqual(config["agents"][1]["agentFilePaths"][1], str(self.foreign))
        self.assertEqual(
            config["titleSettings"]["backgroundImagePath"], f"{token_root}/sub/bg.png"
        )

    def test_build_full_missing_root(self):
        """Test that a missing files root gives an archive with only the config."""
        data = self.builder.build_full(self.snapshot, self.temp_dir / "nothing")

        self.assertEqual(file_entries(data), [CONFIG_ENTRY])

    def test_build_full_duplicate_ids_rejected(self):
        """Test that duplicate agent ids are refused."""
        snapshot = StoreSnapshot(agents=(AgentRecord(id=1), AgentRecord(id=1)))

        with self.assertRaises(MalformedPayload):
            self.builder.build_full(snapshot, self.files_root)

    def test_build_partial_selects_agent_and_files(self):
        """Test exporting agent 2 only."""
        data = self.builder.build_partial(self.snapshot, [2], self.files_root)

        config = archive_config(data)
        self.assertEqual([agent["id"] for agent in config["agents"]], [2])
        self.assertNotIn("titleSettings", config)
        self.assertEqual(file_entries(data), ["files/two.txt", CONFIG_ENTRY])

    def test_build_partial_without_history(self):
        """Test that include_history=False empties both message lists."""
        data = self.builder.build_partial(
            self.snapshot, [2], self.files_root, include_history=False
        )

        agent = archive_config(data)["agents"][0]
        self.assertEqual(agent["messages"], [])
        self.assertEqual(agent["postMessages"], [])
        self.assertEqual(agent["customTitle"], "Two")
        self.assertEqual(file_entries(data), ["files/two.txt", CONFIG_ENTRY])

    def test_build_partial_shared_file_once(self):
        """Test that a file referenced by two agents is packed once."""
        shared = str(self.files_root / "one.txt")
        snapshot = StoreSnapshot(
            agents=(
                AgentRecord(id=1, agent_file_paths=(shared,)),
                AgentRecord(id=2, agent_file_paths=(shared,)),
            )
        )

        data = self.builder.build_partial(snapshot, [1, 2], self.files_root)

        self.assertEqual(file_entries(data), ["files/one.txt", CONFIG_ENTRY])

    def test_build_partial_unknown_ids(self):
        """Test that unknown ids produce an empty agent list."""
        data = self.builder.build_partial(self.snapshot, [42], self.files_root)

        self.assertEqual(archive_config(data)["agents"], [])
        self.assertEqual(file_entries(data), [CONFIG_ENTRY])

    def test_build_partial_dotdot_path_excluded(self):
        """Test that a path climbing out of the root with .. is not packed."""
        secret = self.files_root.parent / "secret.txt"
        secret.write_text("outside the root")
        snapshot = StoreSnapshot(
            agents=(
                AgentRecord(
                    id=1,
                    agent_file_paths=(
                        str(self.files_root / ".." / "secret.txt"),
                        str(self.files_root / "sub" / ".." / "one.txt"),
                    ),
                ),
            )
        )

        data = self.builder.build_partial(snapshot, [1], self.files_root)

        self.assertEqual(file_entries(data), ["files/one.txt", CONFIG_ENTRY])
        archive = self.temp_dir / "partial.zip"
        archive.write_bytes(data)
        ArchiveReader(self.temp_dir / "restored", self.environment).read(archive)
        self.assertStagingEmpty()

    @unittest.skipUnless(hasattr(os, "symlink"), "symlinks not supported")
    def test_symlinks_not_followed(self):
        """Test that symlinks inside the root are not packed."""
        (self.files_root / "link.txt").symlink_to(self.foreign)
        outside = self.temp_dir / "outside"
        outside.mkdir()
        (outside / "elsewhere.txt").write_text("not owned")
        (self.files_root / "linkdir").symlink_to(outside, target_is_directory=True)
        snapshot = StoreSnapshot(
            agents=(
                AgentRecord(
                    id=1,
                    agent_file_paths=(
                        str(self.files_root / "link.txt"),
                        str(self.files_root / "linkdir" / "elsewhere.txt"),
                    ),
                ),
            )
        )

        full = self.builder.build_full(snapshot, self.files_root)
        partial = self.builder.build_partial(snapshot, [1], self.files_root)

        self.assertEqual(
            file_entries(full),
            ["files/one.txt", "files/sub/bg.png", "files/two.txt", CONFIG_ENTRY],
        )
        self.assertEqual(file_entries(partial), [CONFIG_ENTRY])


class TestArchiveReader(ArchiveTestCase):
    """Tests for ArchiveReader."""

    def write_archive(self, data, name="export.zip"):
        path = self.temp_dir / name
        path.write_bytes(data)
        return path

    def test_read_full_round_trip(self):
        """Test that reading a full export restores the snapshot and files."""
        archive = self.write_archive(self.builder.build_full(self.snapshot, self.files_root))
        shutil.rmtree(self.files_root)

        result = ArchiveReader(self.files_root, self.environment).read(archive)

        self.assertFalse(result.legacy)
        self.assertEqual(parse_snapshot(result.config_text), self.snapshot)
        self.assertEqual(len(result.files_copied), 3)
        self.assertEqual((self.files_root / "two.txt").read_text(), "second agent file")
        self.assertEqual((self.files_root / "sub" / "bg.png").read_bytes(), b"\x89PNG")
        self.assertStagingEmpty()

    def test_read_as_other_user(self):
        """Test that an archive from alice restores under bob's files root."""
        archive = self.write_archive(self.builder.build_full(self.snapshot, self.files_root))
        bob_root = self.temp_dir / "bob" / "data" / "files"
        bob_env = Environment(user_name="bob", temp_dir=self.staging_root)

        result = ArchiveReader(bob_root, bob_env).read(archive)

        snapshot = parse_snapshot(result.config_text)
        self.assertEqual(snapshot.agents[0].agent_file_paths, (str(bob_root / "one.txt"),))
        self.assertEqual(snapshot.agents[1].agent_file_paths[1], str(self.foreign))
        self.assertTrue((bob_root / "one.txt").exists())
        self.assertStagingEmpty()

    def test_read_overwrites_existing_files(self):
        """Test that imported files replace same-named local files."""
        archive = self.write_archive(self.builder.build_full(self.snapshot, self.files_root))
        (self.files_root / "one.txt").write_text("local edit")

        ArchiveReader(self.files_root, self.environment).read(archive)

        self.assertEqual((self.files_root / "one.txt").read_text(), "first agent file")

    def test_read_legacy_json_verbatim(self):
        """Test that a bare JSON file is returned byte for byte."""
        text = '{"agents": [{"id": 5, "customTitle": "Ünïcode"}],   "x": 1}\n'
        legacy = self.temp_dir / "old-export.json"
        legacy.write_bytes(text.encode("utf-8"))

        result = ArchiveReader(self.files_root, self.environment).read(legacy)

        self.assertTrue(result.legacy)
        self.assertEqual(result.config_text.encode("utf-8"), text.encode("utf-8"))
        self.assertEqual(result.files_copied, [])
        self.assertStagingEmpty()

    def test_read_legacy_missing_file(self):
        """Test that a missing legacy file raises FileSystemError."""
        with self.assertRaises(FileSystemError):
            ArchiveReader(self.files_root, self.environment).read(self.temp_dir / "gone.json")

    def test_missing_config_entry(self):
        """Test that an archive without the config raises and cleans up."""
        archive = self.temp_dir / "broken.zip"
        write_zip(archive, {"files/a.txt": "data"})

        with self.assertRaises(MissingArchiveMember) as ctx:
            ArchiveReader(self.files_root, self.environment).read(archive)

        self.assertEqual(ctx.exception.member, CONFIG_ENTRY)
        self.assertIsInstance(ctx.exception, StructuralError)
        self.assertFalse((self.files_root / "a.txt").exists())
        self.assertStagingEmpty()

    def test_invalid_config_json(self):
        """Test that a corrupt config raises MalformedPayload and cleans up."""
        archive = self.temp_dir / "bad.zip"
        write_zip(archive, {CONFIG_ENTRY: "{not json", "files/a.txt": "data"})

        with self.assertRaises(MalformedPayload):
            ArchiveReader(self.files_root, self.environment).read(archive)

        self.assertFalse((self.files_root / "a.txt").exists())
        self.assertStagingEmpty()

    def test_unexpected_entry(self):
        """Test that entries outside history/ and files/ are rejected."""
        archive = self.temp_dir / "odd.zip"
        write_zip(archive, {CONFIG_ENTRY: '{"agents": []}', "notes.txt": "hi"})

        with self.assertRaises(StructuralError):
            ArchiveReader(self.files_root, self.environment).read(archive)

        self.assertStagingEmpty()

    def test_unsafe_entry(self):
        """Test that path traversal entries are rejected before extraction."""
        archive = self.temp_dir / "evil.zip"
        write_zip(archive, {CONFIG_ENTRY: '{"agents": []}', "files/../../evil.txt": "x"})

        with self.assertRaises(StructuralError):
            ArchiveReader(self.files_root, self.environment).read(archive)

        self.assertFalse((self.temp_dir / "evil.txt").exists())
        self.assertStagingEmpty()

    def test_not_a_zip(self):
        """Test that a non-ZIP file with the archive extension is rejected."""
        archive = self.temp_dir / "fake.zip"
        archive.write_text('{"agents": []}')

        with self.assertRaises(StructuralError):
            ArchiveReader(self.files_root, self.environment).read(archive)

        self.assertStagingEmpty()

    def test_archive_without_files(self):
        """Test an archive with only the config entry."""
        archive = self.temp_dir / "bare.zip"
        write_zip(archive, {CONFIG_ENTRY: '{"agents": [{"id": 9}]}'})

        result = ArchiveReader(self.files_root, self.environment).read(archive)

        self.assertEqual(parse_snapshot(result.config_text).agent_ids(), [9])
        self.assertEqual(result.files_copied, [])

    def test_copy_failure_cleans_staging(self):
        """Test that a failed copy into the files root raises and cleans up."""
        archive = self.write_archive(self.builder.build_full(self.snapshot, self.files_root))
        restored = self.temp_dir / "restored"

        with patch("assistdesk.backup.archive.shutil.copy2", side_effect=OSError("disk full")):
            with self.assertRaises(FileSystemError):
                ArchiveReader(restored, self.environment).read(archive)

        self.assertStagingEmpty()

    def test_staging_directories_are_unique(self):
        """Test that two reads do not share a staging directory."""
        archive = self.write_archive(self.builder.build_full(self.snapshot, self.files_root))
        reader = ArchiveReader(self.files_root, self.environment)
        seen = []
        original = reader._extract

        def record(path, staging):
            seen.append(staging)
            original(path, staging)

        reader._extract = record
        reader.read(archive)
        reader.read(archive)

        self.assertEqual(len(set(seen)), 2)
        self.assertStagingEmpty()


if __name__ == "__main__":
    unittest.main()
