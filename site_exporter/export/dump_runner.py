"""
Database dump via an external command-line tool.

The dump binary is never taken from configuration or request input: it is
discovered with a fixed lookup command and must pass format, permission and
self-identification checks before it is executed.
"""

import posixpath
import shlex
import shutil
import subprocess
import time
from typing import Callable, List, Optional

from ..colored_logger import get_colored_logger
from ..core.activity_log import ExportLogger
from ..core.models import DatabaseDumpFile
from ..core.result import ErrorKind, Result
from ..io_ops.filesystem import Filesystem, delete_if_exists
from ..io_ops.naming import build_dump_filename

logger = get_colored_logger(__name__)

DUMP_TOOL_NAME = "wp"
DUMP_TOOL_LOOKUP_COMMAND = "which wp 2>/dev/null"
DUMP_TOOL_VERSION_FLAG = "--version"
DUMP_TOOL_IDENTITY = "WP-CLI"
SHELL_METACHARACTERS = (";", "|", "&", "$")


class ShellRunner:
    """Runs shell command strings and returns their combined output."""

    def __init__(self, shell: str = "/bin/sh", timeout: Optional[float] = None):
        self.shell = shell
        self.timeout = timeout

    def is_available(self) -> bool:
        """True if the host can execute shell commands at all."""
        return shutil.which(self.shell) is not None

    def run(self, command: str) -> str:
        """
        Run ``command`` through the shell with stderr folded into stdout.

        Raises:
            OSError: If the shell cannot be started
            subprocess.TimeoutExpired: If a timeout is configured and exceeded
        """
        logger.debug("Running: %s", command)
        result = subprocess.run(
            command,
            shell=True,
            executable=self.shell,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            timeout=self.timeout,
            check=False,  # Success is judged by the caller
        )
        if result.returncode != 0:
            logger.debug("Command exited with code %d: %s", result.returncode, command)
        return result.stdout or ""


class BinaryLocator:
    """Finds and vets the dump tool binary."""

    def __init__(self, shell: ShellRunner, fs: Filesystem):
        self.shell = shell
        self.fs = fs

    def _tool_error(self, code: str, message: str) -> Result:
        logger.warning("Dump tool check failed (%s): %s", code, message)
        return Result.failure(ErrorKind.TOOL_UNAVAILABLE, code, message)

    def validate_path_format(self, path: str) -> Result:
        if not path:
            return self._tool_error("wp_cli_not_found", "WP-CLI not found on this server.")

        if not path.startswith("/"):
            return self._tool_error("wp_cli_not_absolute", "WP-CLI path is not absolute.")

        return Result.success(path)

    def validate_path_security(self, path: str) -> Result:
        if any(char in path for char in SHELL_METACHARACTERS):
            return self._tool_error(
                "wp_cli_suspicious", "Suspicious characters detected in WP-CLI path."
            )

        if not self.fs.exists(path):
            return self._tool_error(
                "wp_cli_not_exists", "WP-CLI executable not found at detected path."
            )

        if not self.fs.is_executable(path):
            return self._tool_error("wp_cli_not_executable", "WP-CLI file is not executable.")

        return Result.success(path)

    def verify_identity(self, path: str) -> Result:
        """Guard against a different executable sitting at the discovered path."""
        try:
            output = self.shell.run(
                f"{shlex.quote(path)} {DUMP_TOOL_VERSION_FLAG} 2>/dev/null"
            )
        except (OSError, subprocess.SubprocessError) as e:
            logger.debug("Version check failed: %s", e)
            output = ""

        if not output or DUMP_TOOL_IDENTITY not in output:
            return self._tool_error(
                "wp_cli_invalid_binary", "Detected file is not a valid WP-CLI executable."
            )

        return Result.success(path)

    def locate(self) -> Result:
        """Return the vetted absolute path of the dump tool."""
        try:
            path = self.shell.run(DUMP_TOOL_LOOKUP_COMMAND).strip()
        except (OSError, subprocess.SubprocessError) as e:
            logger.debug("Dump tool lookup failed: %s", e)
            path = ""

        for check in (self.validate_path_format, self.validate_path_security, self.verify_identity):
            result = check(path)
            if not result.ok:
                return result

        return Result.success(path)


class DatabaseDumpRunner:
    """Produces a SQL dump of the site database in a target directory."""

    def __init__(
        self,
        shell: ShellRunner,
        locator: BinaryLocator,
        fs: Filesystem,
        log: ExportLogger,
        site_root: str,
        site_name: str,
        clock: Callable[[], float] = time.time,
    ):
        self.shell = shell
        self.locator = locator
        self.fs = fs
        self.log = log.bind(__name__)
        self.site_root = site_root
        self.site_name = site_name
        self._clock = clock

    def build_command(self, tool_path: str, dump_path: str) -> str:
        """Every argument is quoted individually."""
        args: List[str] = [
            tool_path,
            "db",
            "export",
            dump_path,
            f"--path={self.site_root}",
            "--allow-root",
        ]
        return shlex.join(args)

    def dump(self, target_dir: str) -> Result:
        """
        Dump the database into ``target_dir``.

        Returns:
            Result holding a DatabaseDumpFile, or TOOL_UNAVAILABLE /
            DUMP_FAILED with the tool's own output as the message
        """
        filename = build_dump_filename(self.site_name, self._clock)
        filepath = posixpath.join(target_dir, filename)

        if not self.shell.is_available():
            return Result.failure(
                ErrorKind.TOOL_UNAVAILABLE,
                "shell_exec_disabled",
                "Shell command execution is not available on this server.",
            )

        located = self.locator.locate()
        if not located.ok:
            return located

        command = self.build_command(located.value, filepath)
        try:
            output = self.shell.run(command)
        except (OSError, subprocess.SubprocessError) as e:
            output = str(e)

        if not self.fs.exists(filepath) or self.fs.size(filepath) <= 0:
            # An empty file may be left behind by a misconfigured tool
            delete_if_exists(self.fs, filepath)
            message = output.strip() if output and output.strip() else "WP-CLI command failed silently."
            return Result.failure(ErrorKind.DUMP_FAILED, "db_export_failed", message)

        self.log.info("Database export successful")
        return Result.success(DatabaseDumpFile(filename=filename, filepath=filepath))
