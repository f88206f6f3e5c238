import posixpath

from ..core.models import ExportPaths
from ..core.result import ErrorKind, Result
from ..io_ops.filesystem import Filesystem
from ..io_ops.path_guard import normalize_path

EXPORT_DIR_NAME = "site-exporter-exports"


class ExportLocation:
    """Derives the export directory and URL from the host's upload location."""

    def __init__(
        self,
        fs: Filesystem,
        uploads_dir: str,
        uploads_url: str,
        dir_name: str = EXPORT_DIR_NAME,
    ):
        self.fs = fs
        self.uploads_dir = uploads_dir
        self.uploads_url = uploads_url
        self.dir_name = dir_name

    def resolve(self) -> Result:
        """
        Return ExportPaths with the export directory in canonical form when
        the upload directory exists, or a CONFIGURATION error.
        """
        if not self.uploads_dir or not self.uploads_url:
            return Result.failure(
                ErrorKind.CONFIGURATION,
                "upload_dir_error",
                "Could not determine the upload directory or URL.",
            )

        base_dir = self.fs.realpath(self.uploads_dir) or normalize_path(
            self.uploads_dir.rstrip("/")
        )
        return Result.success(
            ExportPaths(
                export_dir=posixpath.join(base_dir, self.dir_name),
                export_url=self.uploads_url.rstrip("/") + "/" + self.dir_name,
                export_dir_name=self.dir_name,
            )
        )
