"""Data carried between the export pipeline stages."""

from dataclasses import dataclass


@dataclass(frozen=True)
class ExportPaths:
    """Where one export run writes its files and how they are reached over HTTP."""

    export_dir: str
    export_url: str
    export_dir_name: str


@dataclass(frozen=True)
class DatabaseDumpFile:
    """SQL dump produced for a single run; deleted once embedded in the archive."""

    filename: str
    filepath: str


@dataclass(frozen=True)
class ArchiveArtifact:
    """The downloadable zip produced by a run."""

    filename: str
    filepath: str
