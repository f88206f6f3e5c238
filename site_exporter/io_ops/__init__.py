from .filesystem import Filesystem, LocalFilesystem, TreeEntry, delete_if_exists
from .path_guard import ALLOWED_EXTENSIONS, PathGuard
from .exclusion import ExclusionFilter
from .naming import (
    build_archive_filename,
    build_dump_filename,
    is_archive_filename,
    is_dump_filename,
    sanitize_file_name,
    sanitize_site_name,
)
from .archive_builder import ArchiveBuilder, BuildStats

__all__ = [
    "Filesystem",
    "LocalFilesystem",
    "TreeEntry",
    "delete_if_exists",
    "ALLOWED_EXTENSIONS",
    "PathGuard",
    "ExclusionFilter",
    "build_archive_filename",
    "build_dump_filename",
    "is_archive_filename",
    "is_dump_filename",
    "sanitize_file_name",
    "sanitize_site_name",
    "ArchiveBuilder",
    "BuildStats",
]
