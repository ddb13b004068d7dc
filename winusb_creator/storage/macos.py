"""macOS disk and image services built on diskutil and hdiutil.

Both tools are driven with ``-plist`` output and parsed with plistlib.

Partition naming:
    diskutil names slices ``diskNsM``; after ``eraseDisk ... GPT`` slice 1
    is the EFI system partition and slice 2 holds the data volume, after
    ``eraseDisk ... MBR`` slice 1 is the data volume.
"""

from __future__ import annotations

import plistlib
import subprocess
from pathlib import Path
from typing import Any, List, Optional
from xml.parsers.expat import ExpatError

from winusb_creator.config import settings
from winusb_creator.domain import FileEntry, RemovableDrive
from winusb_creator.logging import LoggerFactory
from winusb_creator.storage.commands import combined_output, run_command
from winusb_creator.storage.exceptions import MountFailedError
from winusb_creator.storage.inspector import enumerate_files
from winusb_creator.storage.interfaces import FormatResult


DISKUTIL = "/usr/sbin/diskutil"
HDIUTIL = "/usr/bin/hdiutil"

log = LoggerFactory.for_disk()
image_log = LoggerFactory.for_image()


def _parse_plist(text: str) -> Any:
    try:
        return plistlib.loads(text.encode("utf-8"))
    except (ValueError, ExpatError) as error:
        log.debug(f"Could not parse plist output: {error}")
        return None


def _device_identifier(device_path: str) -> str:
    return device_path.replace("/dev/", "", 1)


class MacDiskUtility:
    """DiskUtility backed by ``diskutil``."""

    def __init__(self, min_size_bytes: Optional[int] = None):
        if min_size_bytes is None:
            min_size_bytes = settings.min_drive_size_bytes()
        self.min_size_bytes = min_size_bytes

    def list_removable_drives(self) -> List[RemovableDrive]:
        result = run_command(
            [DISKUTIL, "list", "-plist", "external", "physical"],
            log_output=False,
        )
        data = _parse_plist(result.stdout)
        if not isinstance(data, dict):
            return []

        drives: List[RemovableDrive] = []
        for disk in data.get("AllDisksAndPartitions", []) or []:
            identifier = disk.get("DeviceIdentifier")
            size = disk.get("Size")
            if not identifier or not isinstance(size, int):
                continue

            info = self._disk_info(identifier)
            name = identifier
            if info and info.get("MediaName"):
                name = info["MediaName"]
            elif info and info.get("VolumeName"):
                name = info["VolumeName"]
            # No info at all: trust the "external physical" listing
            is_removable = bool(info.get("Removable", False)) if info else True

            if size >= self.min_size_bytes and is_removable:
                drives.append(
                    RemovableDrive(
                        identifier=identifier,
                        name=name,
                        device_path=f"/dev/{identifier}",
                        size_bytes=size,
                        is_removable=is_removable,
                    )
                )
        log.debug(f"Found {len(drives)} removable drives")
        return drives

    def _disk_info(self, identifier: str) -> Optional[dict]:
        try:
            result = run_command(
                [DISKUTIL, "info", "-plist", identifier], log_output=False
            )
        except (subprocess.CalledProcessError, OSError) as error:
            log.debug(f"diskutil info failed for {identifier}: {error}")
            return None
        data = _parse_plist(result.stdout)
        return data if isinstance(data, dict) else None

    def _erase_disk(
        self, device_path: str, filesystem: str, volume_label: str, scheme: str
    ) -> FormatResult:
        log.info(f"Formatting {device_path} as {filesystem} ({scheme})")
        self.unmount(device_path)
        result = run_command(
            [DISKUTIL, "eraseDisk", filesystem, volume_label, scheme, device_path],
            check=False,
        )
        output = combined_output(result)
        format_result = FormatResult(success=result.returncode == 0, output=output)
        if format_result.failed:
            log.error(f"Format failed: {output}")
        else:
            log.info("Format successful")
        return format_result

    def format_fat32(self, device_path: str, volume_label: str) -> FormatResult:
        return self._erase_disk(device_path, "MS-DOS", volume_label, "MBR")

    def format_exfat(self, device_path: str, volume_label: str) -> FormatResult:
        return self._erase_disk(device_path, "ExFAT", volume_label, "GPT")

    def partition_path(self, drive: RemovableDrive, index: int) -> str:
        return f"/dev/{drive.identifier}s{index}"

    def mount(self, device_path: str) -> str:
        identifier = _device_identifier(device_path)
        log.debug(f"Mounting {identifier}")
        run_command([DISKUTIL, "mount", identifier], check=False)

        info = self._disk_info(identifier)
        mount_point = info.get("MountPoint") if info else None
        if not mount_point:
            log.error(f"No MountPoint in disk info for {identifier}")
            raise MountFailedError(device_path)
        return mount_point

    def unmount(self, device_path: str) -> None:
        run_command([DISKUTIL, "unmountDisk", device_path], check=False)

    def eject(self, device_path: str) -> None:
        run_command([DISKUTIL, "eject", device_path], check=False)

    def sync(self) -> None:
        run_command(["/bin/sync"], log_command=False)


class MacImageService:
    """ImageMountService backed by ``hdiutil``."""

    def mount_image(self, path: Path) -> str:
        image_log.info(f"Mounting ISO at path: {path}")
        result = run_command(
            [HDIUTIL, "attach", "-readonly", "-nobrowse", "-plist", str(path)],
            check=False,
        )
        if result.returncode != 0:
            image_log.error(f"hdiutil attach failed: {combined_output(result)}")
            raise MountFailedError(str(path))

        data = _parse_plist(result.stdout)
        if not isinstance(data, dict):
            raise MountFailedError(str(path))

        for entity in data.get("system-entities", []) or []:
            mount_point = entity.get("mount-point")
            if mount_point:
                image_log.debug(f"Found mount point: {mount_point}")
                return mount_point

        image_log.error("No mount-point found in any system entity")
        raise MountFailedError(str(path))

    def unmount_image(self, mount_point: str) -> None:
        result = run_command([HDIUTIL, "unmount", mount_point], check=False)
        if result.returncode != 0:
            image_log.warning(f"hdiutil unmount failed: {combined_output(result)}")

    def list_files(self, root: str) -> List[FileEntry]:
        return enumerate_files(root)
