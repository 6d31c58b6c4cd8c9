"""
Filesystem helpers for the data directory.
"""

import logging
from pathlib import Path
from typing import Union

from .exceptions import DataDirectoryError

logger = logging.getLogger(__name__)


def ensure_folder_exists(path: Union[str, Path]) -> Path:
    """
    Make sure the data directory exists and is a directory.

    Args:
        path: Data directory

    Returns:
        The directory as a Path

    Raises:
        DataDirectoryError: If the directory cannot be created or is a file
    """
    folder = Path(path)
    if folder.is_dir():
        return folder

    if folder.exists():
        raise DataDirectoryError(f"Not a directory: {folder}", path=str(folder))

    try:
        folder.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise DataDirectoryError(f"Cannot create data directory {folder}: {e}", path=str(folder)) from e

    logger.info(f"Created folder: {folder}")
    return folder


def clear_folder(path: Union[str, Path]) -> int:
    """
    Remove the regular files directly inside the data directory.

    Subdirectories are left alone. A file that cannot be removed is logged
    and the rest are still attempted.

    Args:
        path: Data directory

    Returns:
        Number of files removed
    """
    folder = Path(path)
    removed = 0

    try:
        entries = sorted(folder.iterdir())
    except OSError as e:
        raise DataDirectoryError(f"Cannot list data directory {folder}: {e}", path=str(folder)) from e

    for entry in entries:
        if not entry.is_file():
            continue
        try:
            entry.unlink()
            removed += 1
        except OSError as e:
            logger.warning(f"Error removing {entry}: {e}")

    logger.info(f"Folder {folder} cleared ({removed} files removed)")
    return removed
