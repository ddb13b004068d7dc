"""
Pytest configuration and shared fixtures for winusb-creator tests.

This module provides in-memory disk/image collaborators and common fixtures
used across all test modules.
"""

import json
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest

from winusb_creator.config import settings
from winusb_creator.domain import Copying, FileEntry, ImageInfo, RemovableDrive
from winusb_creator.logging import logger
from winusb_creator.storage.interfaces import FormatResult


# ==============================================================================
# Collaborator Fakes
# ==============================================================================


class FakeImageService:
    """ImageMountService that serves a fixed file listing from a directory."""

    def __init__(self, mount_point: str = "/Volumes/CCCOMA_X64FRE", files=None):
        self.mount_point = mount_point
        self.files: List[FileEntry] = list(files or [])
        self.mount_error: Optional[Exception] = None
        self.list_error: Optional[Exception] = None
        self.unmount_error: Optional[Exception] = None
        self.mounted: List[Path] = []
        self.unmounted: List[str] = []

    def mount_image(self, path: Path) -> str:
        self.mounted.append(path)
        if self.mount_error is not None:
            raise self.mount_error
        return self.mount_point

    def unmount_image(self, mount_point: str) -> None:
        self.unmounted.append(mount_point)
        if self.unmount_error is not None:
            raise self.unmount_error

    def list_files(self, root: str) -> List[FileEntry]:
        if self.list_error is not None:
            raise self.list_error
        return list(self.files)


class FakeDiskUtility:
    """DiskUtility that records calls instead of touching real devices."""

    def __init__(self, mount_point: str = "/Volumes/WINUSB", drives=None):
        self.mount_point = mount_point
        self.drives: List[RemovableDrive] = list(drives or [])
        self.format_result = FormatResult(success=True, output="Finished erase")
        self.format_error: Optional[Exception] = None
        self.mount_error: Optional[Exception] = None
        self.calls: List[tuple] = []

    def list_removable_drives(self) -> List[RemovableDrive]:
        self.calls.append(("list",))
        return list(self.drives)

    def format_exfat(self, device_path: str, volume_label: str) -> FormatResult:
        self.calls.append(("format_exfat", device_path, volume_label))
        if self.format_error is not None:
            raise self.format_error
        return self.format_result

    def format_fat32(self, device_path: str, volume_label: str) -> FormatResult:
        self.calls.append(("format_fat32", device_path, volume_label))
        if self.format_error is not None:
            raise self.format_error
        return self.format_result

    def partition_path(self, drive: RemovableDrive, index: int) -> str:
        return f"{drive.device_path}s{index}"

    def mount(self, device_path: str) -> str:
        self.calls.append(("mount", device_path))
        if self.mount_error is not None:
            raise self.mount_error
        return self.mount_point

    def unmount(self, device_path: str) -> None:
        self.calls.append(("unmount", device_path))

    def eject(self, device_path: str) -> None:
        self.calls.append(("eject", device_path))

    def sync(self) -> None:
        self.calls.append(("sync",))

    def call_names(self) -> List[str]:
        return [call[0] for call in self.calls]


def fake_copy(files, source_root, destination_root, publish, *, checkpoint=None, clock=None):
    """Stand-in for copy_entries that publishes three updates and copies nothing."""
    total = sum(entry.size for entry in files)
    publish(Copying(0.01, "Preparing...", 0, total))
    publish(Copying(0.5, "install.wim", total // 2, total))
    publish(Copying(0.99, "Finishing...", total, total))
    return total


# ==============================================================================
# Domain Fixtures
# ==============================================================================


@pytest.fixture
def usb_drive() -> RemovableDrive:
    """Fixture providing a 16 GB removable drive."""
    return RemovableDrive(
        identifier="disk4",
        name="SanDisk Ultra",
        device_path="/dev/disk4",
        size_bytes=16_000_000_000,
    )


@pytest.fixture
def iso_image(tmp_path) -> ImageInfo:
    """Fixture providing image info for a small file standing in for an ISO."""
    iso = tmp_path / "Win11_English_x64.iso"
    iso.write_bytes(b"\0" * 2048)
    return ImageInfo.from_path(iso)


@pytest.fixture
def image_tree(tmp_path) -> Path:
    """
    Fixture providing a directory laid out like a mounted Windows ISO.

    Returns:
        Path to the image root.
    """
    root = tmp_path / "iso"
    (root / "sources").mkdir(parents=True)
    (root / "boot").mkdir()
    (root / "efi" / "boot").mkdir(parents=True)
    (root / "setup.exe").write_bytes(b"MZ" + b"\0" * 98)
    (root / "bootmgr").write_bytes(b"\1" * 40)
    (root / "boot" / "bcd").write_bytes(b"\2" * 30)
    (root / "efi" / "boot" / "bootx64.efi").write_bytes(b"\3" * 20)
    (root / "sources" / "install.wim").write_bytes(b"\4" * 500)
    return root


@pytest.fixture
def fake_image_service() -> FakeImageService:
    return FakeImageService(
        files=[
            FileEntry("setup.exe", 100),
            FileEntry("sources/install.wim", 3_000_000_000),
        ]
    )


@pytest.fixture
def fake_disk_utility(usb_drive) -> FakeDiskUtility:
    return FakeDiskUtility(drives=[usb_drive])


# ==============================================================================
# Subprocess Fixtures
# ==============================================================================


@pytest.fixture
def completed(mocker):
    """Factory for subprocess.CompletedProcess-like results."""

    def make(stdout: str = "", stderr: str = "", returncode: int = 0):
        result = mocker.Mock()
        result.stdout = stdout
        result.stderr = stderr
        result.returncode = returncode
        return result

    return make


@pytest.fixture
def lsblk_output() -> str:
    """
    Fixture providing lsblk JSON with an internal disk, a USB stick and a
    too-small card reader.
    """
    devices: List[Dict[str, Any]] = [
        {
            "name": "nvme0n1",
            "type": "disk",
            "size": 512_110_190_592,
            "model": "Samsung SSD 970",
            "vendor": None,
            "tran": "nvme",
            "rm": False,
            "mountpoint": None,
            "children": [
                {"name": "nvme0n1p1", "type": "part", "size": 536_870_912, "mountpoint": "/boot/efi"},
            ],
        },
        {
            "name": "sdb",
            "type": "disk",
            "size": 32_017_047_552,
            "model": "Ultra Fit       ",
            "vendor": "SanDisk ",
            "tran": "usb",
            "rm": True,
            "mountpoint": None,
            "children": [
                {"name": "sdb1", "type": "part", "size": 32_015_998_976, "mountpoint": "/media/user/OLD"},
            ],
        },
        {
            "name": "sdc",
            "type": "disk",
            "size": 2_000_000_000,
            "model": "Card Reader",
            "vendor": "Generic",
            "tran": "usb",
            "rm": True,
            "mountpoint": None,
        },
    ]
    return json.dumps({"blockdevices": devices})


# ==============================================================================
# Global State
# ==============================================================================


@pytest.fixture(autouse=True)
def reset_settings():
    """Run every test against default settings, not the user's file."""
    settings.settings_store.values = dict(settings.DEFAULT_SETTINGS)
    yield
    settings.settings_store.values = dict(settings.DEFAULT_SETTINGS)


@pytest.fixture(autouse=True)
def reset_logger():
    """Drop sinks added by setup_logging so tests do not leak file handles."""
    yield
    logger.remove()


@pytest.fixture
def log_records():
    """Capture loguru records in-process."""
    records: List[dict] = []
    logger.remove()
    logger.add(lambda message: records.append(message.record), level="TRACE", enqueue=False)
    return records
