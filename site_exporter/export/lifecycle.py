"""
Lifecycle of produced archives: timed auto-deletion, authenticated download
and authenticated manual deletion.

Each entry point is independent and re-validates the filename it is given:
the archive filename grammar, PathGuard containment and existence checks
run again on every request and on every scheduled job.
"""

import posixpath
import time
from dataclasses import dataclass, field
from typing import BinaryIO, Callable, Dict, Generator, Iterator, Optional
from urllib.parse import urlencode

from ..core.activity_log import ExportLogger
from ..core.context import Requester, requester_scope
from ..core.models import ArchiveArtifact
from ..core.rate_limiter import DownloadRateLimiter
from ..core.result import ErrorKind, ExportError, Result
from ..io_ops.filesystem import Filesystem, delete_if_exists
from ..io_ops.naming import is_archive_filename, sanitize_file_name
from ..io_ops.path_guard import ALLOWED_EXTENSIONS, PathGuard, file_extension, normalize_path
from ..scheduler.job_queue import JobQueue
from .access import DELETE_ACTION, DOWNLOAD_ACTION, AccessPolicy, ActionTokenService
from .location import ExportLocation

AUTO_DELETE_DELAY_SECONDS = 5 * 60
DELETE_HOOK = "sse_delete_export_file"
DOWNLOAD_CHUNK_SIZE = 8192
MANAGE_PAGE = "tools.php?page=site-exporter"

CONTENT_TYPES = {
    "zip": "application/zip",
    "sql": "application/sql",
}
DEFAULT_CONTENT_TYPE = "application/octet-stream"

STATUS_FOR_KIND = {
    ErrorKind.VALIDATION: 403,
    ErrorKind.NOT_FOUND: 404,
}


def content_type_for(filename: str) -> str:
    """Closed mapping; anything unknown is served as opaque bytes."""
    return CONTENT_TYPES.get(file_extension(filename), DEFAULT_CONTENT_TYPE)


def download_headers(filename: str, filesize: int) -> Dict[str, str]:
    safe_name = filename.replace('"', "").replace("\r", "").replace("\n", "")
    return {
        "Content-Type": content_type_for(filename),
        "Content-Disposition": f'attachment; filename="{safe_name}"',
        "Content-Length": str(max(0, int(filesize))),
        "Cache-Control": "no-cache, no-store, must-revalidate",
        "Pragma": "no-cache",
        "Expires": "0",
        "X-Content-Type-Options": "nosniff",
        "X-Frame-Options": "DENY",
    }


def status_for(error: ExportError) -> int:
    return STATUS_FOR_KIND.get(error.kind, 500)


@dataclass(frozen=True)
class Notice:
    """A dismissible message for the management view."""

    level: str
    message: str
    dismissible: bool = True


@dataclass(frozen=True)
class ArtifactRequest:
    """An authenticated request naming one export file."""

    filename: str
    token: str
    requester: Requester


@dataclass
class DownloadResponse:
    """Result of a download request.

    On success ``body`` streams the archive from an already open file.
    Callers that stop before the end must call ``close()``.
    """

    status: int
    headers: Dict[str, str] = field(default_factory=dict)
    body: Optional[Generator[bytes, None, None]] = None
    message: str = ""
    handle: Optional[BinaryIO] = field(default=None, repr=False)

    def close(self) -> None:
        if self.body is not None:
            self.body.close()
        if self.handle is not None:
            self.handle.close()


@dataclass
class DeleteResponse:
    status: int
    location: Optional[str] = None
    notice: Optional[Notice] = None


@dataclass(frozen=True)
class ValidatedFile:
    filename: str
    filepath: str
    filesize: int = 0


class ExportFileValidator:
    """Checks shared by scheduled deletion, manual deletion and download."""

    def __init__(
        self,
        fs: Filesystem,
        guard: PathGuard,
        policy: AccessPolicy,
        location: ExportLocation,
        log: ExportLogger,
    ):
        self.fs = fs
        self.guard = guard
        self.policy = policy
        self.location = location
        self.log = log.bind(__name__)

    def _invalid(self, code: str, message: str, detail: str) -> Result:
        self.log.security("Export file validation failed (%s): %s", code, detail)
        return Result.failure(ErrorKind.VALIDATION, code, message)

    def validate_filename_format(self, filename: str) -> Result:
        if not filename:
            return self._invalid("invalid_request", "No file specified.", "empty filename")

        if "/" in filename or "\\" in filename:
            return self._invalid("invalid_filename", "Invalid filename.", filename)

        if not is_archive_filename(filename):
            return self._invalid("invalid_format", "Invalid export file format.", filename)

        return Result.success(filename)

    def validate_path(self, filename: str) -> Result:
        """Resolve ``filename`` inside the export directory through PathGuard."""
        paths = self.location.resolve()
        if not paths.ok:
            return paths

        export_dir = paths.value.export_dir
        validated = self.guard.validate(
            posixpath.join(export_dir, filename), export_dir, ALLOWED_EXTENSIONS
        )
        if not validated.ok:
            return validated

        return Result.success(
            ValidatedFile(filename=posixpath.basename(validated.value), filepath=validated.value)
        )

    def validate_existence(self, filepath: str) -> Result:
        if not self.fs.exists(filepath):
            return Result.failure(ErrorKind.NOT_FOUND, "file_not_found", "Export file not found.")
        return Result.success(filepath)

    def validate_referer(self, requester: Requester) -> Result:
        if not self.policy.has_valid_referer(requester):
            return self._invalid(
                "invalid_request_source",
                "Invalid request source.",
                f"referer {requester.referer!r}",
            )
        return Result.success(True)

    def validate_basic(self, filename: str, requester: Requester) -> Result:
        """Format, path, existence and referer checks in that order."""
        for check in (self.validate_filename_format, self.validate_path):
            result = check(filename)
            if not result.ok:
                return result

        validated_file = result.value
        for result in (
            self.validate_existence(validated_file.filepath),
            self.validate_referer(requester),
        ):
            if not result.ok:
                return result

        return Result.success(validated_file)

    def validate_for_deletion(self, filename: str, requester: Requester) -> Result:
        return self.validate_basic(filename, requester)

    def validate_for_download(self, filename: str, requester: Requester) -> Result:
        basic = self.validate_basic(filename, requester)
        if not basic.ok:
            return basic

        validated_file = basic.value
        if not self.fs.is_readable(validated_file.filepath):
            return self._invalid(
                "file_not_readable", "Export file not readable.", validated_file.filepath
            )

        try:
            filesize = self.fs.size(validated_file.filepath)
        except OSError:
            filesize = 0
        if not filesize:
            return self._invalid(
                "file_size_error", "Could not determine file size.", validated_file.filepath
            )

        return Result.success(
            ValidatedFile(validated_file.filename, validated_file.filepath, filesize)
        )

    def validate_output(self, filepath: str) -> Result:
        """Serve-time re-check immediately before the file is opened."""
        paths = self.location.resolve()
        if not paths.ok:
            return paths

        if file_extension(filepath) not in ALLOWED_EXTENSIONS:
            return self._invalid(
                "invalid_file_type", "Access denied - invalid file type.", filepath
            )

        validated = self.guard.validate(filepath, paths.value.export_dir, ALLOWED_EXTENSIONS)
        if not validated.ok or validated.value != filepath:
            return self._invalid("access_denied", "Access denied.", filepath)

        if not self.fs.is_file(filepath) or not self.fs.is_readable(filepath):
            return Result.failure(ErrorKind.NOT_FOUND, "file_not_found", "File not found.")

        return Result.success(filepath)


class ArtifactLifecycle:
    """Owns produced archives from creation until deletion."""

    def __init__(
        self,
        fs: Filesystem,
        validator: ExportFileValidator,
        rate_limiter: DownloadRateLimiter,
        tokens: ActionTokenService,
        policy: AccessPolicy,
        jobs: JobQueue,
        log: ExportLogger,
        clock: Callable[[], float] = time.time,
    ):
        self.fs = fs
        self.validator = validator
        self.rate_limiter = rate_limiter
        self.tokens = tokens
        self.policy = policy
        self.jobs = jobs
        self.log = log.bind(__name__)
        self._clock = clock

        self.jobs.register(DELETE_HOOK, self.handle_scheduled_deletion)

    @property
    def manage_url(self) -> str:
        return f"{self.policy.admin_url}{MANAGE_PAGE}"

    def download_url(self, filename: str, requester: Requester) -> str:
        query = urlencode(
            {
                "sse_secure_download": filename,
                "sse_download_nonce": self.tokens.issue(DOWNLOAD_ACTION, requester.user_id),
            }
        )
        return f"{self.policy.admin_url}?{query}"

    def delete_url(self, filename: str, requester: Requester) -> str:
        query = urlencode(
            {
                "sse_delete_export": filename,
                "sse_delete_nonce": self.tokens.issue(DELETE_ACTION, requester.user_id),
            }
        )
        return f"{self.policy.admin_url}?{query}"

    def schedule_deletion(self, artifact: ArchiveArtifact) -> bool:
        """Register the one-shot auto-deletion job; a no-op if already registered."""
        return self.jobs.schedule(
            DELETE_HOOK,
            self._clock() + AUTO_DELETE_DELAY_SECONDS,
            {"file": artifact.filepath},
        )

    def handle_scheduled_deletion(self, file: str) -> bool:
        """
        Delete an archive whose auto-deletion time has come.

        The payload path is not trusted: its directory must be the export
        directory and its name must pass the same checks as a manual
        deletion. A file that is already gone counts as deleted.
        """
        if not isinstance(file, str) or not file:
            self.log.warning("Scheduled deletion blocked - invalid payload: %r", file)
            return False

        filename = posixpath.basename(file)
        paths = self.validator.location.resolve()
        if not paths.ok:
            self.log.error("Scheduled deletion skipped: %s", paths.error.message)
            return False

        if posixpath.dirname(normalize_path(file)) != paths.value.export_dir:
            self.log.security("Scheduled deletion blocked - file outside export directory: %s", file)
            return False

        for check in (self.validator.validate_filename_format, self.validator.validate_path):
            result = check(filename)
            if not result.ok:
                self.log.warning(
                    "Scheduled deletion blocked - invalid file: %s - %s", file, result.error.message
                )
                return False

        filepath = result.value.filepath
        if not self.fs.exists(filepath):
            self.log.info("Scheduled deletion: file already removed: %s", filepath)
            return True

        if delete_if_exists(self.fs, filepath):
            self.log.info("Scheduled deletion successful: %s", filepath)
            return True

        self.log.error("Scheduled deletion failed: %s", filepath)
        return False

    def _deny_download(self, status: int, message: str) -> DownloadResponse:
        return DownloadResponse(status=status, message=message)

    def download(self, request: ArtifactRequest) -> DownloadResponse:
        """Authenticate, validate, rate-limit and stream one export archive.

        Only requests that pass validation count against the rate limit.
        """
        requester = request.requester
        with requester_scope(requester):
            if not self.tokens.verify(request.token, DOWNLOAD_ACTION, requester.user_id):
                self.log.security("Download blocked - token verification failed")
                return self._deny_download(403, "Security check failed. Please try again.")

            if not self.policy.is_privileged(requester):
                self.log.security("Download blocked - insufficient privileges")
                return self._deny_download(
                    403, "You do not have permission to download export files."
                )

            filename = sanitize_file_name(request.filename)
            format_check = self.validator.validate_filename_format(filename)
            if not format_check.ok:
                return self._deny_download(status_for(format_check.error), format_check.error.message)

            validated = self.validator.validate_for_download(filename, requester)
            if not validated.ok:
                return self._deny_download(status_for(validated.error), validated.error.message)

            if not self.rate_limiter.is_allowed(requester.user_id):
                self.log.warning("Download rate limit exceeded for user %d", requester.user_id)
                return self._deny_download(
                    429, "Too many download requests. Please wait before trying again."
                )

            return self._serve(validated.value, requester)

    def _serve(self, validated_file: ValidatedFile, requester: Requester) -> DownloadResponse:
        output_check = self.validator.validate_output(validated_file.filepath)
        if not output_check.ok:
            return self._deny_download(status_for(output_check.error), output_check.error.message)

        try:
            handle = self.fs.open_read(validated_file.filepath)
        except OSError as e:
            self.log.error("Failed to serve secure file download: %s (%s)", validated_file.filename, e)
            return self._deny_download(500, "Unable to serve file download.")

        return DownloadResponse(
            status=200,
            headers=download_headers(validated_file.filename, validated_file.filesize),
            body=self._stream(handle, validated_file.filename, requester),
            handle=handle,
        )

    def _stream(self, handle: BinaryIO, filename: str, requester: Requester) -> Iterator[bytes]:
        with handle:
            while True:
                chunk = handle.read(DOWNLOAD_CHUNK_SIZE)
                if not chunk:
                    break
                yield chunk

        with requester_scope(requester):
            self.log.info("Secure file download served: %s", filename)

    def delete(self, request: ArtifactRequest) -> DeleteResponse:
        """Authenticate and validate a manual deletion, then redirect to the management view."""
        requester = request.requester
        with requester_scope(requester):
            if not self.tokens.verify(request.token, DELETE_ACTION, requester.user_id):
                self.log.security("Deletion blocked - token verification failed")
                return DeleteResponse(403, notice=Notice("error", "Security check failed. Please try again."))

            if not self.policy.is_privileged(requester):
                self.log.security("Deletion blocked - insufficient privileges")
                return DeleteResponse(
                    403, notice=Notice("error", "You do not have permission to delete export files.")
                )

            filename = sanitize_file_name(request.filename)
            validated = self.validator.validate_for_deletion(filename, requester)
            if not validated.ok:
                return DeleteResponse(
                    status_for(validated.error), notice=Notice("error", validated.error.message)
                )

            filepath = validated.value.filepath
            if delete_if_exists(self.fs, filepath):
                self.log.info("Manual deletion of export file: %s", filepath)
                notice = Notice("success", "Export file successfully deleted.")
            else:
                self.log.error("Failed manual deletion of export file: %s", filepath)
                notice = Notice("error", "Failed to delete export file.")

            return DeleteResponse(302, location=self.manage_url, notice=notice)
