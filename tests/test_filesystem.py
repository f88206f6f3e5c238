"""Tests for LocalFilesystem traversal and idempotent deletion."""

import os
import unittest
from unittest.mock import patch

from site_exporter.io_ops.filesystem import LocalFilesystem, delete_if_exists

from tests.test_utils import TempDirTestCase


class TestLocalFilesystem(TempDirTestCase):
    def setUp(self):
        super().setUp()
        self.fs = LocalFilesystem()

    def relative_walk(self, prune=None):
        return [
            os.path.relpath(entry.path, self.temp_dir)
            for entry in self.fs.walk(self.temp_dir, prune)
        ]

    def test_walk_is_parent_first_and_sorted(self):
        self.write_file("b.txt")
        self.write_file("a/z.txt")
        self.write_file("a/y/x.txt")

        self.assertEqual(self.relative_walk(), ["a", "a/y", "a/y/x.txt", "a/z.txt", "b.txt"])

    def test_pruned_directories_yielded_but_not_descended(self):
        self.write_file("keep/file.txt")
        self.write_file("skip/file.txt")

        walked = self.relative_walk(prune=lambda entry: entry.path.endswith("skip"))

        self.assertIn("skip", walked)
        self.assertNotIn("skip/file.txt", walked)
        self.assertIn("keep/file.txt", walked)

    def test_missing_root_raises(self):
        with self.assertRaises(OSError):
            list(self.fs.walk(os.path.join(self.temp_dir, "missing")))

    def test_realpath_of_missing_path_is_none(self):
        self.assertIsNone(self.fs.realpath(os.path.join(self.temp_dir, "missing")))

    def test_delete_if_exists_is_idempotent(self):
        path = self.write_file("a.zip")

        self.assertTrue(delete_if_exists(self.fs, path))
        self.assertFalse(os.path.exists(path))
        self.assertTrue(delete_if_exists(self.fs, path))

    def test_delete_race_counts_as_success(self):
        """A file removed between the existence check and the delete is fine."""
        path = self.write_file("a.zip")
        with patch.object(LocalFilesystem, "delete", side_effect=FileNotFoundError(path)):
            self.assertTrue(delete_if_exists(self.fs, path))

    def test_failed_delete_reported(self):
        path = self.write_file("a.zip")
        with patch.object(LocalFilesystem, "delete", side_effect=PermissionError(path)):
            self.assertFalse(delete_if_exists(self.fs, path))


if __name__ == "__main__":
    unittest.main()
