"""Platform detection and creation of the matching disk/image services."""

from __future__ import annotations

import platform

from winusb_creator.storage.exceptions import CreatorError
from winusb_creator.storage.interfaces import DiskUtility, ImageMountService


class UnsupportedPlatformError(CreatorError):
    """Raised when no disk/image service exists for this operating system."""


def detect_platform() -> str:
    """Detect current platform. Returns: macos or linux."""
    system = platform.system().lower()

    if system == "darwin":
        return "macos"
    if system == "linux":
        return "linux"
    raise UnsupportedPlatformError(f"Platform {system} is not supported")


def get_disk_utility() -> DiskUtility:
    if detect_platform() == "macos":
        from winusb_creator.storage.macos import MacDiskUtility

        return MacDiskUtility()
    from winusb_creator.storage.linux import LinuxDiskUtility

    return LinuxDiskUtility()


def get_image_service() -> ImageMountService:
    if detect_platform() == "macos":
        from winusb_creator.storage.macos import MacImageService

        return MacImageService()
    from winusb_creator.storage.linux import LinuxImageService

    return LinuxImageService()
