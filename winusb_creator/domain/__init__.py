"""Domain models for bootable USB creation."""

from __future__ import annotations

from .models import (
    Cancelled,
    Completed,
    Copying,
    CreationState,
    Failed,
    FileEntry,
    FilesystemLayout,
    Finalizing,
    Formatting,
    Idle,
    ImageInfo,
    Mounting,
    RemovableDrive,
    Splitting,
    copy_fraction,
    human_size,
    is_in_progress,
    is_terminal,
    overall_progress,
)


__all__ = [
    "Cancelled",
    "Completed",
    "Copying",
    "CreationState",
    "Failed",
    "FileEntry",
    "FilesystemLayout",
    "Finalizing",
    "Formatting",
    "Idle",
    "ImageInfo",
    "Mounting",
    "RemovableDrive",
    "Splitting",
    "copy_fraction",
    "human_size",
    "is_in_progress",
    "is_terminal",
    "overall_progress",
]
