"""Tests for archive and dump filename generation and parsing."""

import unittest

from site_exporter.io_ops.naming import (
    build_archive_filename,
    build_dump_filename,
    generate_random_token,
    is_archive_filename,
    is_dump_filename,
    parse_archive_filename,
    sanitize_file_name,
    sanitize_site_name,
)

from tests.test_utils import FixedClock


class TestNaming(unittest.TestCase):
    """Test filename helpers."""

    def setUp(self):
        self.clock = FixedClock()

    def test_archive_filename_matches_grammar(self):
        """Generated archive names always validate."""
        for site_name in ("My Blog!", "", "日本語", "a" * 200, "--x--"):
            with self.subTest(site_name=site_name):
                filename = build_archive_filename(site_name, self.clock)
                self.assertTrue(is_archive_filename(filename), filename)

    def test_archive_filename_components(self):
        """Token, sanitized site name and GMT timestamp are embedded."""
        filename = build_archive_filename("My Blog", self.clock, random_token="abc1234")
        self.assertEqual(filename, "site_export_sse_abc1234_My-Blog_2024-01-01_00-00-00.zip")

        parsed = parse_archive_filename(filename)
        self.assertEqual(parsed.random_token, "abc1234")
        self.assertEqual(parsed.site_name, "My-Blog")
        self.assertEqual(parsed.timestamp, "2024-01-01_00-00-00")

    def test_dump_filename(self):
        """Dump names follow the db_dump_<site>_<timestamp>.sql form."""
        filename = build_dump_filename("test", self.clock)
        self.assertEqual(filename, "db_dump_test_2024-01-01_00-00-00.sql")
        self.assertTrue(is_dump_filename(filename))

    def test_random_token_is_seven_hex_chars(self):
        token = generate_random_token()
        self.assertRegex(token, r"^[a-f0-9]{7}$")

    def test_invalid_archive_names(self):
        """Near-misses of the grammar are rejected."""
        for filename in (
            "site_export_sse_ABC1234_site_2024-01-01_00-00-00.zip",
            "site_export_sse_abc123_site_2024-01-01_00-00-00.zip",
            "site_export_sse_abc1234_site_2024-01-01_00-00-00.sql",
            "site_export_sse_abc1234_si.te_2024-01-01_00-00-00.zip",
            "site_export_sse_abc1234_site_2024-01-01_00-00-00.zip\n",
            "../site_export_sse_abc1234_site_2024-01-01_00-00-00.zip",
            "",
            None,
        ):
            with self.subTest(filename=filename):
                self.assertFalse(is_archive_filename(filename))

    def test_sanitize_site_name(self):
        self.assertEqual(sanitize_site_name("My  Great Site"), "My-Great-Site")
        self.assertEqual(sanitize_site_name("!!!"), "site")
        self.assertEqual(len(sanitize_site_name("x" * 80)), 50)

    def test_sanitize_file_name(self):
        self.assertEqual(sanitize_file_name(" my file.zip "), "my-file.zip")
        self.assertEqual(sanitize_file_name("../etc/passwd"), "etcpasswd")
        self.assertEqual(sanitize_file_name("<script>.zip"), "script.zip")
        self.assertEqual(sanitize_file_name(""), "")


if __name__ == "__main__":
    unittest.main()
