"""Collaborator contracts used by the USB creator.

The creation pipeline only talks to these protocols; platform
implementations live in ``storage.macos`` and ``storage.linux`` and tests
supply in-memory fakes.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import List, Protocol

from winusb_creator.domain import FileEntry, RemovableDrive


FORMAT_FAILURE_MARKERS = ("Error", "failed")


@dataclass(frozen=True)
class FormatResult:
    """Outcome of a format command plus its raw diagnostic text."""

    success: bool
    output: str = ""

    @property
    def failed(self) -> bool:
        return not self.success or any(
            marker in self.output for marker in FORMAT_FAILURE_MARKERS
        )


class DiskUtility(Protocol):
    def list_removable_drives(self) -> List[RemovableDrive]:
        """Removable drives of at least the minimum installer size."""

    def format_exfat(self, device_path: str, volume_label: str) -> FormatResult:
        """Erase the whole device as GPT + exFAT (unmounts first)."""

    def format_fat32(self, device_path: str, volume_label: str) -> FormatResult:
        """Erase the whole device as MBR + FAT32 (unmounts first)."""

    def partition_path(self, drive: RemovableDrive, index: int) -> str:
        """Device path of partition ``index`` (1-based) on ``drive``."""

    def mount(self, device_path: str) -> str:
        """Mount a partition and return its mount point."""

    def unmount(self, device_path: str) -> None: ...

    def eject(self, device_path: str) -> None: ...

    def sync(self) -> None:
        """Flush pending writes to stable storage."""


class ImageMountService(Protocol):
    def mount_image(self, path: Path) -> str:
        """Attach an ISO read-only and return its mount point."""

    def unmount_image(self, mount_point: str) -> None: ...

    def list_files(self, root: str) -> List[FileEntry]: ...
