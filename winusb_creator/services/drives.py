from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional

from winusb_creator.domain import RemovableDrive
from winusb_creator.logging import LoggerFactory
from winusb_creator.storage.interfaces import DiskUtility


log = LoggerFactory.for_disk()


@dataclass
class DriveSnapshot:
    discovered: List[RemovableDrive]
    active: Optional[RemovableDrive]


def refresh_drives(
    disk_utility: DiskUtility, active_drive: Optional[RemovableDrive]
) -> DriveSnapshot:
    """Rescan drives, keeping the selection if the same device is still present.

    A lone drive is selected automatically when nothing was selected.
    """
    discovered = disk_utility.list_removable_drives()
    active = None
    if active_drive is not None:
        active = next(
            (drive for drive in discovered if drive.identifier == active_drive.identifier),
            None,
        )
        if active is None:
            log.info(f"Selected drive {active_drive.identifier} is no longer present")
    elif len(discovered) == 1:
        active = discovered[0]
    return DriveSnapshot(discovered=discovered, active=active)


def find_drive(
    discovered: List[RemovableDrive], identifier: str
) -> Optional[RemovableDrive]:
    wanted = identifier.replace("/dev/", "", 1)
    for drive in discovered:
        if drive.identifier == wanted:
            return drive
    return None


def drive_labels(discovered: List[RemovableDrive]) -> List[str]:
    return [f"{drive.identifier}  {drive.display_name}" for drive in discovered]
