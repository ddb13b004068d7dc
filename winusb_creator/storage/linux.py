"""Linux disk and image services built on lsblk, parted, mkfs and mount.

Partition layouts mirror what ``diskutil eraseDisk`` produces on macOS so
the creator can treat both platforms alike:

    MBR:  1 = FAT32 data partition (1MiB to 100%)
    GPT:  1 = EFI system partition (FAT32, 200MiB), 2 = exFAT data partition

Implementation Details:
    - Uses parted for partition management, 1MiB aligned
    - Uses mkfs.vfat / mkfs.exfat for filesystem creation
    - Unmounts every partition of the device before partitioning
    - Waits for partition device nodes to appear after partprobe

Security Notes:
    - All operations require root privileges
"""

from __future__ import annotations

import contextlib
import json
import os
import shutil
import subprocess
import tempfile
import time
from pathlib import Path
from typing import Any, List, Optional

from winusb_creator.config import settings
from winusb_creator.domain import FileEntry, RemovableDrive
from winusb_creator.logging import LoggerFactory
from winusb_creator.storage.commands import combined_output, run_command
from winusb_creator.storage.exceptions import MountFailedError
from winusb_creator.storage.inspector import enumerate_files
from winusb_creator.storage.interfaces import FormatResult


MEDIA_ROOT = Path("/media/winusb-creator")
EFI_PARTITION_END = "201MiB"

log = LoggerFactory.for_disk()
image_log = LoggerFactory.for_image()


def partition_node(device_path: str, index: int) -> str:
    """``/dev/sda`` -> ``/dev/sda1``; ``/dev/mmcblk0`` -> ``/dev/mmcblk0p1``."""
    partition_suffix = "p" if device_path[-1].isdigit() else ""
    return f"{device_path}{partition_suffix}{index}"


def _is_removable(device: dict[str, Any]) -> bool:
    return device.get("rm") in (1, "1", True) or device.get("tran") == "usb"


def _settle(device_path: str) -> None:
    """Notify the kernel of partition changes and wait for udev."""
    for cmd in (
        ["sync"],
        ["partprobe", device_path],
        ["udevadm", "settle", "--timeout=10"],
    ):
        if shutil.which(cmd[0]):
            with contextlib.suppress(subprocess.CalledProcessError, OSError):
                run_command(cmd, log_command=False)


def _wait_for_node(path: str, attempts: int = 10, delay: float = 0.5) -> bool:
    for _ in range(attempts):
        if os.path.exists(path):  # noqa: PTH110
            return True
        time.sleep(delay)
    return False


class LinuxDiskUtility:
    """DiskUtility backed by lsblk, parted and mkfs."""

    def __init__(self, min_size_bytes: Optional[int] = None):
        if min_size_bytes is None:
            min_size_bytes = settings.min_drive_size_bytes()
        self.min_size_bytes = min_size_bytes

    def _block_devices(self, device_path: Optional[str] = None) -> List[dict]:
        command = [
            "lsblk",
            "-J",
            "-b",
            "-o",
            "NAME,TYPE,SIZE,MODEL,VENDOR,TRAN,RM,MOUNTPOINT",
        ]
        if device_path:
            command.append(device_path)
        result = run_command(command, log_output=False, log_command=False)
        try:
            data = json.loads(result.stdout)
        except json.JSONDecodeError as error:
            log.debug(f"lsblk returned invalid JSON: {error}")
            return []
        return data.get("blockdevices", []) or []

    def list_removable_drives(self) -> List[RemovableDrive]:
        drives: List[RemovableDrive] = []
        for device in self._block_devices():
            if device.get("type") != "disk" or not device.get("name"):
                continue
            try:
                size = int(device.get("size") or 0)
            except (TypeError, ValueError):
                continue
            if size < self.min_size_bytes or not _is_removable(device):
                continue

            parts = [
                value.strip()
                for value in (device.get("vendor"), device.get("model"))
                if value and value.strip()
            ]
            identifier = device["name"]
            drives.append(
                RemovableDrive(
                    identifier=identifier,
                    name=" ".join(parts) or identifier,
                    device_path=f"/dev/{identifier}",
                    size_bytes=size,
                    is_removable=True,
                )
            )
        log.debug(f"Found {len(drives)} removable drives")
        return drives

    def _mountpoints(self, device_path: str) -> List[str]:
        mountpoints: List[str] = []

        def collect(device: dict) -> None:
            if device.get("mountpoint"):
                mountpoints.append(device["mountpoint"])
            for child in device.get("children", []) or []:
                collect(child)

        for device in self._block_devices(device_path):
            collect(device)
        return mountpoints

    def _partition(self, device_path: str, use_gpt: bool) -> None:
        label = "gpt" if use_gpt else "msdos"
        run_command(["parted", "-s", device_path, "mklabel", label])
        if use_gpt:
            run_command(
                ["parted", "-s", device_path, "mkpart", "EFI", "fat32", "1MiB", EFI_PARTITION_END]
            )
            run_command(["parted", "-s", device_path, "set", "1", "esp", "on"])
            run_command(
                ["parted", "-s", device_path, "mkpart", "WINUSB", EFI_PARTITION_END, "100%"]
            )
        else:
            run_command(
                ["parted", "-s", device_path, "mkpart", "primary", "fat32", "1MiB", "100%"]
            )
        _settle(device_path)

    def _format(self, device_path: str, volume_label: str, use_gpt: bool) -> FormatResult:
        outputs: List[str] = []
        try:
            self.unmount(device_path)
            self._partition(device_path, use_gpt)

            if use_gpt:
                commands = [
                    ["mkfs.vfat", "-F", "32", "-n", "EFI", partition_node(device_path, 1)],
                    ["mkfs.exfat", "-n", volume_label, partition_node(device_path, 2)],
                ]
            else:
                commands = [
                    ["mkfs.vfat", "-F", "32", "-n", volume_label, partition_node(device_path, 1)],
                ]

            for command in commands:
                if not _wait_for_node(command[-1]):
                    message = f"Partition node {command[-1]} did not appear after creation"
                    log.error(message)
                    return FormatResult(success=False, output=message)
                result = run_command(command)
                outputs.append(combined_output(result))
        except subprocess.CalledProcessError as error:
            stderr_msg = (error.stderr or "").strip() or "no error message"
            log.error(f"Format command failed with code {error.returncode}: {stderr_msg}")
            outputs.append(f"Error: {stderr_msg}")
            return FormatResult(success=False, output="\n".join(outputs))

        log.info(f"Successfully formatted {device_path}")
        return FormatResult(success=True, output="\n".join(o for o in outputs if o))

    def format_fat32(self, device_path: str, volume_label: str) -> FormatResult:
        log.info(f"Formatting {device_path} as FAT32 (MBR)")
        return self._format(device_path, volume_label, use_gpt=False)

    def format_exfat(self, device_path: str, volume_label: str) -> FormatResult:
        log.info(f"Formatting {device_path} as exFAT (GPT)")
        return self._format(device_path, volume_label, use_gpt=True)

    def partition_path(self, drive: RemovableDrive, index: int) -> str:
        return partition_node(drive.device_path, index)

    def mount(self, device_path: str) -> str:
        existing = self._mountpoints(device_path)
        if existing:
            log.debug(f"{device_path} already mounted at {existing[0]}")
            return existing[0]

        mount_point = MEDIA_ROOT / Path(device_path).name
        mount_point.mkdir(parents=True, exist_ok=True)
        try:
            run_command(["mount", device_path, str(mount_point)])
        except subprocess.CalledProcessError as error:
            log.error(f"Failed to mount {device_path}: {(error.stderr or '').strip()}")
            raise MountFailedError(device_path) from error
        return str(mount_point)

    def unmount(self, device_path: str) -> None:
        for mountpoint in self._mountpoints(device_path):
            result = run_command(["umount", mountpoint], check=False)
            if result.returncode != 0:
                log.warning(f"Failed to unmount {mountpoint}: {combined_output(result)}")

    def eject(self, device_path: str) -> None:
        self.unmount(device_path)
        if shutil.which("eject"):
            run_command(["eject", device_path], check=False)

    def sync(self) -> None:
        run_command(["sync"], log_command=False)


class LinuxImageService:
    """ImageMountService using a read-only loop mount."""

    def mount_image(self, path: Path) -> str:
        mount_point = tempfile.mkdtemp(prefix="winusb-iso-")
        image_log.info(f"Mounting ISO {path} at {mount_point}")
        try:
            run_command(["mount", "-o", "loop,ro", str(path), mount_point])
        except subprocess.CalledProcessError as error:
            image_log.error(f"Loop mount failed: {(error.stderr or '').strip()}")
            with contextlib.suppress(OSError):
                os.rmdir(mount_point)
            raise MountFailedError(str(path)) from error
        return mount_point

    def unmount_image(self, mount_point: str) -> None:
        run_command(["umount", mount_point])
        with contextlib.suppress(OSError):
            os.rmdir(mount_point)

    def list_files(self, root: str) -> List[FileEntry]:
        return enumerate_files(root)
