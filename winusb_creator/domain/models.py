"""Domain model for bootable USB creation.

Selections (image and drive), the transient file listing produced by the
content inspector, the filesystem layout decision, and the ``CreationState``
tagged union published by the orchestrator.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Union

from winusb_creator.storage.exceptions import InvalidImageError


def human_size(size_bytes):
    if size_bytes is None:
        return "0B"
    size = float(size_bytes)
    for unit in ["B", "KB", "MB", "GB", "TB"]:
        if size < 1024.0:
            return f"{size:.1f}{unit}"
        size /= 1024.0
    return f"{size:.1f}PB"


# ==============================================================================
# Selection Domain
# ==============================================================================


@dataclass(frozen=True)
class ImageInfo:
    """A Windows ISO chosen as the source of a creation run."""

    path: Path
    name: str
    size_bytes: int

    @property
    def formatted_size(self) -> str:
        return human_size(self.size_bytes)

    @classmethod
    def from_path(cls, path: str | Path) -> ImageInfo:
        """Build image info from a file on disk.

        Raises:
            InvalidImageError: If the path is missing or not a regular file
        """
        image_path = Path(path)
        try:
            if not image_path.is_file():
                raise InvalidImageError(str(image_path))
            size_bytes = image_path.stat().st_size
        except OSError as error:
            raise InvalidImageError(str(image_path)) from error
        return cls(path=image_path, name=image_path.name, size_bytes=size_bytes)


@dataclass(frozen=True)
class RemovableDrive:
    """A removable drive snapshot from a drive scan.

    Snapshots are replaced wholesale on every scan, so two snapshots of the
    same device compare equal by identifier.
    """

    identifier: str  # e.g., "disk4" or "sdb"
    name: str = field(compare=False)
    device_path: str = field(compare=False)
    size_bytes: int = field(compare=False)
    is_removable: bool = field(default=True, compare=False)

    @property
    def formatted_size(self) -> str:
        return human_size(self.size_bytes)

    @property
    def display_name(self) -> str:
        return f"{self.name} ({self.formatted_size})"


@dataclass(frozen=True)
class FileEntry:
    """A regular file inside a mounted image, relative to the image root."""

    path: str  # POSIX separators, no leading slash
    size: int


class FilesystemLayout(Enum):
    """Destination partitioning chosen before formatting."""

    FAT32_MBR = ("MS-DOS FAT32", False, 1)
    EXFAT_GPT = ("exFAT", True, 2)

    def __init__(self, filesystem: str, use_gpt: bool, data_partition: int):
        self.filesystem = filesystem
        self.use_gpt = use_gpt
        # GPT puts the EFI system partition first
        self.data_partition = data_partition

    @classmethod
    def for_large_files(cls, use_large_filesystem: bool) -> FilesystemLayout:
        return cls.EXFAT_GPT if use_large_filesystem else cls.FAT32_MBR


# ==============================================================================
# Creation State
# ==============================================================================


@dataclass(frozen=True)
class Idle:
    description = "Ready to create"


@dataclass(frozen=True)
class Mounting:
    description = "Mounting ISO..."


@dataclass(frozen=True)
class Formatting:
    description = "Formatting USB drive..."


@dataclass(frozen=True)
class Copying:
    progress: float  # fraction of the copy phase, not of the whole run
    current_file: str
    bytes_copied: int
    total_bytes: int

    @property
    def description(self) -> str:
        return self.current_file


@dataclass(frozen=True)
class Splitting:
    description = "Splitting large files..."


@dataclass(frozen=True)
class Finalizing:
    description = "Finalizing..."


@dataclass(frozen=True)
class Completed:
    description = "Completed successfully!"


@dataclass(frozen=True)
class Failed:
    message: str

    @property
    def description(self) -> str:
        return f"Failed: {self.message}"


@dataclass(frozen=True)
class Cancelled:
    description = "Cancelled"


CreationState = Union[
    Idle,
    Mounting,
    Formatting,
    Copying,
    Splitting,
    Finalizing,
    Completed,
    Failed,
    Cancelled,
]

TERMINAL_STATES = (Completed, Failed, Cancelled)


def is_terminal(state: CreationState) -> bool:
    return isinstance(state, TERMINAL_STATES)


def is_in_progress(state: CreationState) -> bool:
    return not isinstance(state, (Idle, *TERMINAL_STATES))


def overall_progress(state: CreationState) -> float:
    """Map a creation state onto the normalized [0, 1] progress scale.

    Mounting is weighted above Formatting although it runs first; the values
    are kept as-is so progress bars match existing builds.
    """
    if isinstance(state, Copying):
        return 0.10 + state.progress * 0.75
    if isinstance(state, Mounting):
        return 0.10
    if isinstance(state, Formatting):
        return 0.05
    if isinstance(state, Splitting):
        return 0.90
    if isinstance(state, Finalizing):
        return 0.95
    if isinstance(state, Completed):
        return 1.0
    if isinstance(state, (Idle, Failed, Cancelled)):
        return 0.0
    raise TypeError(f"Unknown creation state: {state!r}")


def copy_fraction(bytes_copied: int, total_bytes: int) -> float:
    """Fraction of the copy phase done, capped below completion at 0.99."""
    return min(bytes_copied / max(total_bytes, 1), 0.99)
