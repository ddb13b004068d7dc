"""Custom exceptions for USB creation.

Every step of the creation pipeline raises one of these; the orchestrator
converts them to a ``Failed`` state whose message is ``str(error)``.

Exception Hierarchy:
    CreatorError (base)
        ├── SelectionError
        │   ├── NoImageSelectedError
        │   └── NoDriveSelectedError
        ├── MountFailedError
        ├── FormatFailedError
        ├── CopyFailedError
        ├── InsufficientSpaceError
        ├── InvalidImageError
        ├── PermissionDeniedError
        ├── SplitFailedError
        ├── UnknownCreatorError
        ├── CreationInProgressError
        ├── CreatorNotResetError
        └── CreationCancelledError

Usage:
    from winusb_creator.storage.exceptions import CopyFailedError

    raise CopyFailedError(f"Write error: {name}")
"""

from __future__ import annotations


class CreatorError(Exception):
    """Base exception for all USB creation operations."""


class SelectionError(CreatorError):
    """Base exception for missing user selections."""


class NoImageSelectedError(SelectionError):
    """No source ISO image was chosen."""

    def __init__(self):
        super().__init__("No Windows ISO file selected")


class NoDriveSelectedError(SelectionError):
    """No destination drive was chosen."""

    def __init__(self):
        super().__init__("No USB drive selected")


class MountFailedError(CreatorError):
    """Mounting the ISO image or the formatted drive failed."""

    def __init__(self, target: str | None = None):
        self.target = target
        super().__init__("Failed to mount the ISO file")


class FormatFailedError(CreatorError):
    """Formatting the destination drive failed."""

    def __init__(self, device: str | None = None, output: str = ""):
        self.device = device
        self.output = output
        super().__init__("Failed to format the USB drive")


class CopyFailedError(CreatorError):
    """Copying a file to the destination drive failed."""

    def __init__(self, detail: str):
        self.detail = detail
        super().__init__(f"Failed to copy files: {detail}")


class InsufficientSpaceError(CreatorError):
    """Destination drive is too small for the image contents."""

    def __init__(self, required_bytes: int | None = None, available_bytes: int | None = None):
        self.required_bytes = required_bytes
        self.available_bytes = available_bytes
        super().__init__("USB drive doesn't have enough space")


class InvalidImageError(CreatorError):
    """The selected file is not a usable Windows ISO."""

    def __init__(self, path: str | None = None):
        self.path = path
        super().__init__("The selected file is not a valid Windows ISO")


class PermissionDeniedError(CreatorError):
    """The operating system refused a disk operation."""

    def __init__(self):
        super().__init__("Permission denied. Please run with administrator privileges.")


class SplitFailedError(CreatorError):
    """Splitting install.wim into FAT32-sized parts failed."""

    def __init__(self):
        super().__init__("Failed to split install.wim file")


class UnknownCreatorError(CreatorError):
    """Unexpected failure, carried with its original message."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class CreationInProgressError(CreatorError):
    """A creation run is already in flight on this creator."""

    def __init__(self):
        super().__init__("A USB creation is already in progress")


class CreatorNotResetError(CreatorError):
    """A new run was requested before the last one was reset."""

    def __init__(self):
        super().__init__("Reset the creator before starting another USB creation")


class CreationCancelledError(CreatorError):
    """The run was cancelled through its cancellation token."""

    def __init__(self):
        super().__init__("USB creation was cancelled")
