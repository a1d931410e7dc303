"""
Directory scans that build the catalog of servable files.

Nothing is cached: every call rescans the live directory.  Results come back
in directory-enumeration order, which is OS dependent and not sorted.
"""

import logging
import os

from .config import REQUIRED_SUFFIX

logger = logging.getLogger(__name__)


def list_files(directory: str, suffix: str = REQUIRED_SUFFIX) -> list[str]:
    """Return the regular files in *directory* whose name contains *suffix*.

    An unreadable or missing directory yields an empty list; the failure is
    only logged.
    """
    try:
        with os.scandir(directory) as entries:
            return [
                entry.name
                for entry in entries
                if entry.is_file(follow_symlinks=False) and suffix in entry.name
            ]
    except OSError as e:
        logger.error("Unable to open catalog directory %s: %s", directory, e)
        return []


def search_files(
    directory: str, term: str, suffix: str = REQUIRED_SUFFIX
) -> list[str]:
    """Like list_files, keeping only names that contain *term* (case-sensitive)."""
    return [name for name in list_files(directory, suffix) if term in name]
