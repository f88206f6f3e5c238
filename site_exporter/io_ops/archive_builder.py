"""
Streaming zip construction for site exports.

The builder writes the database dump first, then walks the site tree
parent-first. Structural failures (open, dump entry, traversal root,
finalize) abort the build; a single unreadable or unaddable entry is logged
and skipped so one bad file never costs the whole export.
"""

import posixpath
import shutil
import time
import zipfile
from typing import Any, Callable, Dict, List, Optional, Tuple

from ..colored_logger import get_colored_logger
from ..core.activity_log import ExportLogger
from ..core.models import ArchiveArtifact, DatabaseDumpFile
from ..core.result import ErrorKind, ExportError, Result
from .exclusion import ExclusionFilter
from .filesystem import Filesystem, TreeEntry, delete_if_exists
from .naming import build_archive_filename
from .path_guard import PathGuard

logger = get_colored_logger(__name__)

LARGE_FILE_THRESHOLD = 10 * 1024 * 1024  # stream files above 10MB
PROGRESS_INTERVAL = 1000
ZIP_EPOCH = (1980, 1, 1, 0, 0, 0)
ZIP_MAX_DATE = (2107, 12, 31, 23, 59, 58)


class BuildStats:
    """Counters and per-entry failures for one archive build."""

    def __init__(self):
        self.files_added = 0
        self.dirs_added = 0
        self.total_size = 0
        self.excluded = 0
        self.skipped = 0
        self.entry_errors: List[ExportError] = []

    @property
    def entries_seen(self) -> int:
        return (
            self.files_added
            + self.dirs_added
            + self.excluded
            + self.skipped
            + len(self.entry_errors)
        )

    def add_file(self, file_size: int) -> None:
        self.files_added += 1
        self.total_size += file_size

    def add_dir(self) -> None:
        self.dirs_added += 1

    def exclude(self) -> None:
        self.excluded += 1

    def skip(self) -> None:
        self.skipped += 1

    def entry_error(self, code: str, message: str) -> None:
        self.entry_errors.append(ExportError(ErrorKind.ARCHIVE_ENTRY, code, message))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "files_added": self.files_added,
            "dirs_added": self.dirs_added,
            "total_size": self.total_size,
            "excluded": self.excluded,
            "skipped": self.skipped,
            "errors": len(self.entry_errors),
        }


def zip_date_time(timestamp: float) -> Tuple[int, int, int, int, int, int]:
    """Local time tuple clamped to the range a zip header can store."""
    date_time = tuple(time.localtime(timestamp)[:6])
    return min(max(date_time, ZIP_EPOCH), ZIP_MAX_DATE)


class ArchiveBuilder:
    """Builds the export zip from a dump file and a source tree."""

    ZIP_ENTRY_ERRORS = (OSError, ValueError, RuntimeError, zipfile.LargeZipFile)

    def __init__(
        self,
        fs: Filesystem,
        guard: PathGuard,
        log: ExportLogger,
        site_name: str,
        compression_level: int = 6,
        chunk_size: int = 8192,
        clock: Callable[[], float] = time.time,
    ):
        self.fs = fs
        self.guard = guard
        self.log = log.bind(__name__)
        self.site_name = site_name
        self.compression_level = compression_level
        self.chunk_size = max(1024, chunk_size)  # Minimum 1KB chunks
        self._clock = clock
        self.last_stats: Optional[BuildStats] = None

    def _open_archive(self, filepath: str) -> Tuple[Any, zipfile.ZipFile]:
        handle = self.fs.open_write(filepath)
        try:
            zipf = zipfile.ZipFile(
                handle,
                "w",
                zipfile.ZIP_DEFLATED,
                compresslevel=self.compression_level,
                allowZip64=True,
            )
        except Exception:
            handle.close()
            raise
        return handle, zipf

    def _abort(self, handle, zipf: Optional[zipfile.ZipFile], filepath: str) -> None:
        """Close and remove a partially written archive."""
        for closer in (zipf, handle):
            if closer is None:
                continue
            try:
                closer.close()
            except self.ZIP_ENTRY_ERRORS as e:
                logger.debug("Error closing aborted archive %s: %s", filepath, e)

        if not delete_if_exists(self.fs, filepath):
            self.log.error("Failed to remove partial archive: %s", filepath)

    def _make_zipinfo(self, arcname: str, source_path: Optional[str]) -> zipfile.ZipInfo:
        timestamp = self.fs.mtime(source_path) if source_path else self._clock()
        return zipfile.ZipInfo(arcname, date_time=zip_date_time(timestamp))

    def _add_file(self, zipf: zipfile.ZipFile, source_path: str, arcname: str) -> int:
        """Add one file under ``arcname``; returns its size."""
        file_size = self.fs.size(source_path)
        zinfo = self._make_zipinfo(arcname, source_path)
        zinfo.compress_type = zipfile.ZIP_DEFLATED
        zinfo.external_attr = 0o100644 << 16

        if file_size > LARGE_FILE_THRESHOLD:
            zinfo.file_size = file_size
            with self.fs.open_read(source_path) as src_file:
                with zipf.open(zinfo, "w") as dst_file:
                    shutil.copyfileobj(src_file, dst_file, self.chunk_size)
        else:
            with self.fs.open_read(source_path) as src_file:
                data = src_file.read()
            zipf.writestr(zinfo, data, compresslevel=self.compression_level)

        return file_size

    def _add_empty_dir(self, zipf: zipfile.ZipFile, source_path: str, arcname: str) -> None:
        zinfo = self._make_zipinfo(arcname.rstrip("/") + "/", source_path)
        zinfo.external_attr = (0o40755 << 16) | 0x10
        zipf.writestr(zinfo, b"")

    def _relative_path(self, path: str, source_root: str) -> str:
        return path[len(source_root):].lstrip("/")

    def _process_entry(
        self,
        zipf: zipfile.ZipFile,
        entry: TreeEntry,
        source_root: str,
        exclusion: ExclusionFilter,
        stats: BuildStats,
    ) -> None:
        if not entry.readable:
            self.log.warning("Skipping unreadable file/dir: %s", entry.path)
            stats.skip()
            return

        relative_path = self._relative_path(entry.path, source_root)
        if not relative_path:
            return

        if exclusion.should_exclude(entry.path, relative_path, entry.is_dir):
            stats.exclude()
            return

        if entry.is_dir:
            try:
                self._add_empty_dir(zipf, entry.path, relative_path)
                stats.add_dir()
            except self.ZIP_ENTRY_ERRORS as e:
                self.log.error("Failed to add directory to zip: %s (%s)", relative_path, e)
                stats.entry_error("zip_dir_add_failed", relative_path)
            return

        if not entry.is_file:
            logger.debug("Skipping special or dangling entry: %s", entry.path)
            stats.skip()
            return

        real_path = self.fs.realpath(entry.path)
        if real_path is None:
            self.log.warning("Skipping file with unresolvable real path: %s", entry.path)
            stats.skip()
            return

        try:
            stats.add_file(self._add_file(zipf, real_path, relative_path))
        except self.ZIP_ENTRY_ERRORS as e:
            self.log.error(
                "Failed to add file to zip: %s (Source: %s) (%s)", relative_path, real_path, e
            )
            stats.entry_error("zip_file_add_failed", relative_path)

    def _add_site_files(
        self,
        zipf: zipfile.ZipFile,
        source_root: str,
        exclusion: ExclusionFilter,
        stats: BuildStats,
    ) -> None:
        def prune(entry: TreeEntry) -> bool:
            relative_path = self._relative_path(entry.path, source_root)
            return exclusion.should_exclude(entry.path, relative_path, is_dir=True)

        for entry in self.fs.walk(source_root, prune=prune):
            self._process_entry(zipf, entry, source_root, exclusion, stats)

            if stats.entries_seen and stats.entries_seen % PROGRESS_INTERVAL == 0:
                logger.progress(
                    "Archiving progress: %d entries processed (%d files, %.2f MB)",
                    stats.entries_seen,
                    stats.files_added,
                    stats.total_size / (1024 * 1024),
                )

    def _resolve_source_root(self, source_root: str) -> str:
        real_root = self.fs.realpath(source_root)
        if real_root is None:
            self.log.warning(
                "Could not resolve real path for source root %s. Using it directly.", source_root
            )
            return source_root.rstrip("/") or "/"
        return real_root

    def build(
        self, source_root: str, export_dir: str, dump_file: DatabaseDumpFile
    ) -> Result:
        """
        Create the export archive.

        Args:
            source_root: Site directory to archive
            export_dir: Canonical export directory; also excluded from the walk
            dump_file: Database dump embedded as the first entry

        Returns:
            Result holding an ArchiveArtifact, or the structural error that
            stopped the build
        """
        filename = build_archive_filename(self.site_name, self._clock)
        validated = self.guard.validate(posixpath.join(export_dir, filename), export_dir)
        if not validated.ok:
            return validated
        filepath = validated.value

        stats = BuildStats()
        self.last_stats = stats
        start_time = time.time()

        try:
            handle, zipf = self._open_archive(filepath)
        except self.ZIP_ENTRY_ERRORS as e:
            self.log.error("Could not create zip file at %s: %s", filepath, e)
            delete_if_exists(self.fs, filepath)
            return Result.failure(
                ErrorKind.ARCHIVE_OPEN,
                "zip_create_failed",
                f"Could not create zip file at {filename}",
            )

        try:
            self._add_file(zipf, dump_file.filepath, dump_file.filename)
        except self.ZIP_ENTRY_ERRORS as e:
            self.log.error("Failed to add database file to zip archive: %s", e)
            self._abort(handle, zipf, filepath)
            return Result.failure(
                ErrorKind.ARCHIVE_ENTRY,
                "zip_db_add_failed",
                "Failed to add database file to zip archive.",
            )

        exclusion = ExclusionFilter(export_dir)
        source_root = self._resolve_source_root(source_root)

        try:
            self._add_site_files(zipf, source_root, exclusion, stats)
        except Exception as e:
            self.log.error("Error during file processing: %s", e)
            self._abort(handle, zipf, filepath)
            return Result.failure(
                ErrorKind.ARCHIVE_FINALIZE,
                "file_iteration_failed",
                f"Error during file processing: {e}",
            )

        try:
            zipf.close()
            handle.close()
        except self.ZIP_ENTRY_ERRORS as e:
            self.log.error("Failed to finalize zip archive %s: %s", filepath, e)
            self._abort(handle, None, filepath)
            return self._finalize_failed()

        if not self.fs.exists(filepath):
            return self._finalize_failed()

        logger.success(
            "Site archive created: %s (%d files, %d dirs, %.2f MB, %.2f seconds)",
            filepath,
            stats.files_added,
            stats.dirs_added,
            self.fs.size(filepath) / (1024 * 1024),
            time.time() - start_time,
        )
        if stats.entry_errors or stats.skipped:
            self.log.warning(
                "Archive built with omissions: %d skipped, %d failed entries",
                stats.skipped,
                len(stats.entry_errors),
            )

        return Result.success(ArchiveArtifact(filename=filename, filepath=filepath))

    def _finalize_failed(self) -> Result:
        return Result.failure(
            ErrorKind.ARCHIVE_FINALIZE,
            "zip_finalize_failed",
            "Failed to finalize or save the zip archive after processing files.",
        )
