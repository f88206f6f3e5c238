"""
Naming utilities for export artifacts.

Archive filenames are a security control: download and deletion only accept
names matching ``ARCHIVE_FILENAME_PATTERN``, so every archive this module
generates must match it.
"""

import re
import secrets
import time
from dataclasses import dataclass
from typing import Callable, Optional

ARCHIVE_PREFIX = "site_export_sse"
ARCHIVE_EXTENSION = "zip"
DUMP_EXTENSION = "sql"
TIMESTAMP_FORMAT = "%Y-%m-%d_%H-%M-%S"
DEFAULT_SITE_NAME = "site"

ARCHIVE_FILENAME_PATTERN = re.compile(
    r"^site_export_sse_([a-f0-9]{7})_([A-Za-z0-9_-]+)_"
    r"(\d{4}-\d{2}-\d{2}_\d{2}-\d{2}-\d{2})\.zip$"
)
DUMP_FILENAME_PATTERN = re.compile(
    r"^db_dump_([A-Za-z0-9_-]+)_(\d{4}-\d{2}-\d{2}_\d{2}-\d{2}-\d{2})\.sql$"
)


@dataclass(frozen=True)
class ArchiveName:
    """Components of a parsed archive filename."""

    random_token: str
    site_name: str
    timestamp: str


def sanitize_site_name(site_name: str, max_length: int = 50) -> str:
    """Reduce a site title to the ``[A-Za-z0-9_-]`` alphabet the grammar allows."""
    if not site_name:
        return DEFAULT_SITE_NAME

    safe_name = re.sub(r"\s+", "-", site_name.strip())
    safe_name = re.sub(r"[^A-Za-z0-9_-]", "", safe_name)
    safe_name = re.sub(r"-{2,}", "-", safe_name)[:max_length]
    return safe_name or DEFAULT_SITE_NAME


def sanitize_file_name(filename: str) -> str:
    """
    Clean an incoming filename before it is validated.

    Whitespace becomes ``-``, characters outside ``[A-Za-z0-9._-]`` are
    dropped and leading/trailing ``.-_`` are trimmed. Traversal tokens made
    only of allowed characters (``..``) survive on purpose so that later
    checks still see and reject them.
    """
    if not filename:
        return ""

    name = re.sub(r"\s+", "-", filename.strip())
    name = re.sub(r"[^A-Za-z0-9._-]", "", name)
    return name.strip(".-_")


def generate_timestamp(clock: Callable[[], float] = time.time) -> str:
    """GMT timestamp in the ``YYYY-MM-DD_HH-MM-SS`` form used by both filenames."""
    return time.strftime(TIMESTAMP_FORMAT, time.gmtime(clock()))


def generate_random_token() -> str:
    """Seven lowercase hex characters from a CSPRNG."""
    return secrets.token_hex(4)[:7]


def build_archive_filename(
    site_name: str,
    clock: Callable[[], float] = time.time,
    random_token: Optional[str] = None,
) -> str:
    token = random_token or generate_random_token()
    return (
        f"{ARCHIVE_PREFIX}_{token}_{sanitize_site_name(site_name)}"
        f"_{generate_timestamp(clock)}.{ARCHIVE_EXTENSION}"
    )


def build_dump_filename(site_name: str, clock: Callable[[], float] = time.time) -> str:
    return (
        f"db_dump_{sanitize_site_name(site_name)}"
        f"_{generate_timestamp(clock)}.{DUMP_EXTENSION}"
    )


def parse_archive_filename(filename: str) -> Optional[ArchiveName]:
    """Return the filename's components, or None if it is not an export archive."""
    if not isinstance(filename, str):
        return None

    match = ARCHIVE_FILENAME_PATTERN.fullmatch(filename)
    if not match:
        return None

    return ArchiveName(*match.groups())


def is_archive_filename(filename: str) -> bool:
    return parse_archive_filename(filename) is not None


def is_dump_filename(filename: str) -> bool:
    return isinstance(filename, str) and DUMP_FILENAME_PATTERN.fullmatch(filename) is not None
