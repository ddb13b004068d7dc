"""Inspection of a mounted Windows ISO.

Lists the regular files under the image root and answers the one question
the format policy needs: does anything exceed the FAT32 per-file limit?
"""

from __future__ import annotations

import os
import stat
from pathlib import Path
from typing import Iterable, List, Optional

from winusb_creator.domain import FileEntry
from winusb_creator.logging import LoggerFactory
from winusb_creator.storage.exceptions import InvalidImageError


log = LoggerFactory.for_image()

# FAT32 file size limit (4GB - 1 byte)
FAT32_MAX_FILE_SIZE = 4_294_967_295

INSTALL_IMAGE_CANDIDATES = ("sources/install.wim", "sources/install.esd")


def _is_hidden(name: str) -> bool:
    return name.startswith(".")


def enumerate_files(root: str | Path) -> List[FileEntry]:
    """Recursively list regular, non-hidden files under ``root``.

    Entries whose metadata cannot be read are skipped. Hidden directories
    are not descended into.

    Raises:
        InvalidImageError: If ``root`` itself cannot be opened
    """
    root_path = Path(root)
    try:
        with os.scandir(root_path):
            pass
    except OSError as error:
        log.error(f"Cannot open image root {root_path}: {error}")
        raise InvalidImageError(str(root_path)) from error

    files: List[FileEntry] = []

    def _walk_error(error: OSError) -> None:
        log.debug(f"Skipping unreadable directory: {error}")

    for dirpath, dirnames, filenames in os.walk(root_path, onerror=_walk_error):
        dirnames[:] = [name for name in dirnames if not _is_hidden(name)]
        for filename in filenames:
            if _is_hidden(filename):
                continue
            file_path = Path(dirpath) / filename
            try:
                stat_result = os.stat(file_path, follow_symlinks=False)
            except OSError as error:
                log.debug(f"Skipping {file_path}: {error}")
                continue
            if not stat.S_ISREG(stat_result.st_mode):
                continue
            relative = file_path.relative_to(root_path).as_posix()
            files.append(FileEntry(path=relative, size=stat_result.st_size))

    log.debug(f"Found {len(files)} files in {root_path}")
    return files


def oversized_files(
    files: Iterable[FileEntry], ceiling: int = FAT32_MAX_FILE_SIZE
) -> List[FileEntry]:
    return [entry for entry in files if entry.size > ceiling]


def has_oversized_file(
    files: Iterable[FileEntry], ceiling: int = FAT32_MAX_FILE_SIZE
) -> bool:
    """True if any file is larger than ``ceiling`` bytes."""
    return any(entry.size > ceiling for entry in files)


def total_size(files: Iterable[FileEntry]) -> int:
    return sum(entry.size for entry in files)


def find_install_image(files: Iterable[FileEntry]) -> Optional[FileEntry]:
    """Pick the Windows install image (install.wim or install.esd) from a listing.

    Paths match regardless of letter case; install.wim wins over install.esd.

    Returns:
        The matching FileEntry, or None if the image has neither
    """
    by_path = {entry.path.lower(): entry for entry in files}
    for candidate in INSTALL_IMAGE_CANDIDATES:
        if candidate in by_path:
            return by_path[candidate]
    return None
