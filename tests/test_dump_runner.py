"""
Tests for the database dump runner and dump tool discovery.

A scripted shell stands in for ``/bin/sh`` so no external tool is run.
"""

import unittest
from unittest.mock import patch

from site_exporter.core.result import ErrorKind
from site_exporter.export.dump_runner import (
    DUMP_TOOL_LOOKUP_COMMAND,
    BinaryLocator,
    DatabaseDumpRunner,
    ShellRunner,
)

from tests.test_utils import BaseTestCase, FakeFilesystem, FixedClock, make_logger

WP_PATH = "/usr/local/bin/wp"
EXPORT_DIR = "/srv/site/wp-content/uploads/site-exporter-exports"
DUMP_PATH = f"{EXPORT_DIR}/db_dump_blog_2024-01-01_00-00-00.sql"


class ScriptedShell:
    """ShellRunner double answering commands by prefix."""

    def __init__(self, fs, available=True, tool_path=WP_PATH, version="WP-CLI 2.10.0", dump=b"SQL"):
        self.fs = fs
        self.available = available
        self.tool_path = tool_path
        self.version = version
        self.dump = dump
        self.dump_output = ""
        self.commands = []

    def is_available(self):
        return self.available

    def run(self, command):
        self.commands.append(command)
        if command == DUMP_TOOL_LOOKUP_COMMAND:
            return self.tool_path + "\n"
        if "--version" in command:
            return self.version
        if " db export " in command:
            if self.dump is not None:
                self.fs.add_file(DUMP_PATH, self.dump)
            return self.dump_output
        return ""


class DumpRunnerTestCase(BaseTestCase):
    def setUp(self):
        super().setUp()
        self.fs = FakeFilesystem()
        self.fs.add_file(WP_PATH, b"#!/bin/sh", executable=True)
        self.fs.add_dir(EXPORT_DIR)
        self.shell = ScriptedShell(self.fs)
        _store, self.activity_log, log = make_logger()
        self.runner = DatabaseDumpRunner(
            self.shell,
            BinaryLocator(self.shell, self.fs),
            self.fs,
            log,
            site_root="/srv/site",
            site_name="blog",
            clock=FixedClock(),
        )


class TestBinaryLocator(DumpRunnerTestCase):
    """Test discovery checks in order."""

    def locate(self):
        return BinaryLocator(self.shell, self.fs).locate()

    def assert_tool_error(self, result, code):
        self.assertFalse(result.ok)
        self.assertEqual(result.error.kind, ErrorKind.TOOL_UNAVAILABLE)
        self.assertEqual(result.error.code, code)

    def test_valid_tool_located(self):
        result = self.locate()
        self.assertTrue(result.ok)
        self.assertEqual(result.value, WP_PATH)

    def test_not_found(self):
        self.shell.tool_path = ""
        self.assert_tool_error(self.locate(), "wp_cli_not_found")

    def test_relative_path(self):
        self.shell.tool_path = "bin/wp"
        self.assert_tool_error(self.locate(), "wp_cli_not_absolute")

    def test_suspicious_characters(self):
        for path in ("/usr/bin/wp;rm", "/usr/bin/wp|x", "/usr/bin/wp&", "/usr/bin/$wp"):
            with self.subTest(path=path):
                self.shell.tool_path = path
                self.assert_tool_error(self.locate(), "wp_cli_suspicious")

    def test_missing_file(self):
        self.shell.tool_path = "/opt/wp"
        self.assert_tool_error(self.locate(), "wp_cli_not_exists")

    def test_not_executable(self):
        self.fs.executable.clear()
        self.assert_tool_error(self.locate(), "wp_cli_not_executable")

    def test_wrong_identity(self):
        """A binary that does not identify itself as the dump tool is refused."""
        self.shell.version = "BusyBox v1.36"
        self.assert_tool_error(self.locate(), "wp_cli_invalid_binary")


class TestDatabaseDumpRunner(DumpRunnerTestCase):
    """Test dump invocation and failure handling."""

    def test_successful_dump(self):
        result = self.runner.dump(EXPORT_DIR)

        self.assertTrue(result.ok)
        self.assertEqual(result.value.filepath, DUMP_PATH)
        self.assertEqual(result.value.filename, "db_dump_blog_2024-01-01_00-00-00.sql")

    def test_command_arguments(self):
        """The command is the fixed export invocation with each argument quoted."""
        command = self.runner.build_command(WP_PATH, "/tmp/dir with space/d.sql")
        self.assertEqual(
            command,
            "/usr/local/bin/wp db export '/tmp/dir with space/d.sql' "
            "--path=/srv/site --allow-root",
        )

    def test_shell_unavailable(self):
        self.shell.available = False
        result = self.runner.dump(EXPORT_DIR)

        self.assertEqual(result.error.kind, ErrorKind.TOOL_UNAVAILABLE)
        self.assertEqual(result.error.code, "shell_exec_disabled")

    def test_tool_failure_reports_output(self):
        """When no dump appears the tool's output becomes the message."""
        self.shell.dump = None
        self.shell.dump_output = "Error: Error establishing a database connection.\n"

        result = self.runner.dump(EXPORT_DIR)

        self.assertEqual(result.error.kind, ErrorKind.DUMP_FAILED)
        self.assertEqual(result.error.code, "db_export_failed")
        self.assertEqual(result.error.message, "Error: Error establishing a database connection.")

    def test_silent_failure(self):
        self.shell.dump = None
        result = self.runner.dump(EXPORT_DIR)
        self.assertEqual(result.error.message, "WP-CLI command failed silently.")

    def test_empty_dump_removed(self):
        """An empty dump file counts as failure and is deleted."""
        self.shell.dump = b""
        result = self.runner.dump(EXPORT_DIR)

        self.assertFalse(result.ok)
        self.assertFalse(self.fs.exists(DUMP_PATH))

    def test_tool_error_stops_before_dump(self):
        self.shell.version = "not it"
        result = self.runner.dump(EXPORT_DIR)

        self.assertEqual(result.error.code, "wp_cli_invalid_binary")
        self.assertFalse(any(" db export " in c for c in self.shell.commands))


class TestShellRunner(unittest.TestCase):
    """Test the subprocess-backed runner."""

    @patch("site_exporter.export.dump_runner.subprocess.run")
    def test_run_folds_stderr(self, mock_run):
        mock_run.return_value.stdout = "out"
        mock_run.return_value.returncode = 1

        output = ShellRunner().run("wp --version")

        self.assertEqual(output, "out")
        kwargs = mock_run.call_args.kwargs
        self.assertTrue(kwargs["shell"])
        self.assertEqual(kwargs["executable"], "/bin/sh")

    @patch("site_exporter.export.dump_runner.shutil.which", return_value=None)
    def test_unavailable_shell(self, _mock_which):
        self.assertFalse(ShellRunner("/nonexistent/sh").is_available())


if __name__ == "__main__":
    unittest.main()
