"""Tests for the colored logger helpers."""

import logging
import time
import unittest
from unittest.mock import patch

from site_exporter.colored_logger import (
    SECURITY_LEVEL,
    ColoredFormatter,
    get_colored_logger,
    resolve_level,
)


class TestResolveLevel(unittest.TestCase):
    def test_names_and_numbers(self):
        self.assertEqual(resolve_level("info"), logging.INFO)
        self.assertEqual(resolve_level(" SECURITY "), SECURITY_LEVEL)
        self.assertEqual(resolve_level(15), 15)

    def test_unknown_name(self):
        with self.assertRaises(ValueError):
            resolve_level("verbose")


class TestColoredFormatter(unittest.TestCase):
    def make_record(self, level):
        return logging.LogRecord("x", level, __file__, 1, "hello %s", ("world",), None)

    @patch("sys.stderr.isatty", return_value=False)
    def test_plain_output_without_tty(self, _isatty):
        formatter = ColoredFormatter(fmt="%(levelname)s: %(message)s")
        self.assertEqual(formatter.format(self.make_record(SECURITY_LEVEL)), "SECURITY: hello world")

    @patch("sys.stderr.isatty", return_value=True)
    def test_colored_output_on_tty(self, _isatty):
        formatter = ColoredFormatter(fmt="%(message)s")
        output = formatter.format(self.make_record(logging.ERROR))
        self.assertTrue(output.startswith("\033[31m"))
        self.assertTrue(output.endswith("\033[0m"))

    def test_timestamps_in_gmt(self):
        self.assertIs(ColoredFormatter.converter, time.gmtime)


class TestEnhancedLogger(unittest.TestCase):
    def test_custom_level_methods(self):
        logger = get_colored_logger("site_exporter.tests")
        with self.assertLogs("site_exporter.tests", level=logging.DEBUG) as captured:
            logger.progress("p")
            logger.success("s")
            logger.security("x")

        self.assertEqual(
            [record.levelname for record in captured.records], ["PROGRESS", "SUCCESS", "SECURITY"]
        )


if __name__ == "__main__":
    unittest.main()
