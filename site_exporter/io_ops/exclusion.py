"""
Exclusion rules deciding which site entries belong in an export archive.

Rules are checked in order and the first match wins:
1. anything under the export directory itself
2. cache/upgrade/temp subtrees of wp-content
3. VCS and OS metadata entries (.git, .svn, .hg, .DS_Store, .htaccess, .user.ini)
"""

import re

from ..colored_logger import get_colored_logger

logger = get_colored_logger(__name__)

DIRECTORY_EXCLUSION_PATTERN = re.compile(r"^wp-content/(cache|upgrade|temp)/")
FILE_EXCLUSION_PATTERN = re.compile(
    r"(^|/)\.(git|svn|hg|DS_Store|htaccess|user\.ini)$", re.IGNORECASE
)


class ExclusionFilter:
    """Decides per filesystem entry whether it is left out of the archive."""

    def __init__(self, export_dir: str):
        self.export_dir = export_dir

    def should_exclude(
        self, full_path: str, relative_path: str, is_dir: bool = False
    ) -> bool:
        """
        Apply the exclusion rules to one entry.

        Args:
            full_path: Absolute path of the entry as found during traversal
            relative_path: Path relative to the source root, ``/``-separated
            is_dir: Directories are matched with a trailing ``/`` so that the
                cache/upgrade/temp roots themselves are excluded, not only
                their contents

        Returns:
            True if the entry must not be archived
        """
        if self.export_dir and full_path.startswith(self.export_dir):
            logger.debug("Excluding export directory entry: %s", relative_path)
            return True

        candidate = f"{relative_path}/" if is_dir else relative_path
        if DIRECTORY_EXCLUSION_PATTERN.search(candidate):
            logger.debug("Excluding cache/temporary entry: %s", relative_path)
            return True

        if FILE_EXCLUSION_PATTERN.search(relative_path):
            logger.debug("Excluding VCS/system entry: %s", relative_path)
            return True

        return False
