"""Bootable Windows USB creation pipeline.

Sequence:
    Mounting    attach the ISO read-only
    (inspect)   list its files; any file above the FAT32 limit selects exFAT/GPT,
                otherwise FAT32/MBR. Decided before formatting because the
                filesystem cannot change once copying starts.
    Formatting  erase the whole drive with the chosen layout
    (remount)   wait for the drive to re-present, then mount the data
                partition (2 on GPT, where 1 is the EFI system partition;
                1 on MBR)
    Copying     copy every file, publishing progress
    Finalizing  sync the drive, detach the ISO
    Completed

Any failure detaches the ISO (best-effort) and publishes ``Failed`` with the
error's message. The USB drive is left mounted so its contents can be
inspected. Cancelling through a ``CancellationToken`` publishes ``Cancelled``
after the same cleanup.

Example:
    >>> creator = UsbCreator(get_disk_utility(), get_image_service())
    >>> creator.create(image, drive, on_state=print)
"""

from __future__ import annotations

import subprocess
import threading
import time
from contextlib import contextmanager
from typing import Callable, List, Optional

from winusb_creator.config import settings
from winusb_creator.domain import (
    Cancelled,
    Completed,
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
)
from winusb_creator.logging import LoggerFactory, operation_context
from winusb_creator.storage.copier import copy_entries
from winusb_creator.storage.exceptions import (
    CreationCancelledError,
    CreationInProgressError,
    CreatorError,
    CreatorNotResetError,
    FormatFailedError,
    InsufficientSpaceError,
    InvalidImageError,
    MountFailedError,
    NoDriveSelectedError,
    NoImageSelectedError,
    PermissionDeniedError,
    UnknownCreatorError,
)
from winusb_creator.storage.inspector import (
    find_install_image,
    has_oversized_file,
    oversized_files,
    total_size,
)
from winusb_creator.storage.interfaces import DiskUtility, ImageMountService


log = LoggerFactory.for_creator(job_id="-")

StateCallback = Callable[[CreationState], None]


class CancellationToken:
    """Cooperative cancellation flag checked between steps and during copies."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise CreationCancelledError()


@contextmanager
def _translate_errors(error_factory: Callable[[], CreatorError]):
    """Turn collaborator OS/subprocess failures into the step's CreatorError."""
    try:
        yield
    except CreatorError:
        raise
    except PermissionError as error:
        raise PermissionDeniedError() from error
    except (OSError, subprocess.SubprocessError) as error:
        raise error_factory() from error


class UsbCreator:
    """Runs one creation at a time against injected disk/image collaborators."""

    def __init__(
        self,
        disk_utility: DiskUtility,
        image_service: ImageMountService,
        *,
        volume_label: Optional[str] = None,
        settle_delay: Optional[float] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.disk_utility = disk_utility
        self.image_service = image_service
        self.volume_label = volume_label or settings.volume_label()
        if settle_delay is None:
            settle_delay = settings.settle_delay_seconds()
        self.settle_delay = settle_delay
        self._sleep = sleep
        self._clock = clock
        self._busy = threading.Lock()
        self._state: CreationState = Idle()
        self._image_mount_point: Optional[str] = None

    @property
    def state(self) -> CreationState:
        return self._state

    @property
    def is_busy(self) -> bool:
        return self._busy.locked()

    def reset(self) -> None:
        """Return to Idle after a terminal state."""
        if self.is_busy:
            raise CreationInProgressError()
        self._state = Idle()

    def create(
        self,
        image: Optional[ImageInfo],
        drive: Optional[RemovableDrive],
        on_state: StateCallback,
        cancel_token: Optional[CancellationToken] = None,
    ) -> CreationState:
        """Run the whole pipeline on the calling thread.

        Returns:
            The terminal state (Completed, Failed or Cancelled)

        Raises:
            NoImageSelectedError, NoDriveSelectedError: Missing selection
            CreationInProgressError: Another run is in flight
            CreatorNotResetError: The last run has not been reset
        """
        self._acquire(image, drive)
        return self._run_and_release(image, drive, on_state, cancel_token)

    def start(
        self,
        image: Optional[ImageInfo],
        drive: Optional[RemovableDrive],
        on_state: StateCallback,
        cancel_token: Optional[CancellationToken] = None,
    ) -> threading.Thread:
        """Run the pipeline on a background thread.

        The busy check happens before this returns, so a second ``start``
        while the first is running raises ``CreationInProgressError``.
        """
        self._acquire(image, drive)
        thread = threading.Thread(
            target=self._run_and_release,
            args=(image, drive, on_state, cancel_token),
            name="winusb-creator",
            daemon=True,
        )
        try:
            thread.start()
        except RuntimeError:
            self._busy.release()
            raise
        return thread

    def _acquire(self, image: Optional[ImageInfo], drive: Optional[RemovableDrive]) -> None:
        if image is None:
            raise NoImageSelectedError()
        if drive is None:
            raise NoDriveSelectedError()
        if not self._busy.acquire(blocking=False):
            raise CreationInProgressError()
        if not isinstance(self._state, Idle):
            self._busy.release()
            raise CreatorNotResetError()

    def _run_and_release(
        self,
        image: ImageInfo,
        drive: RemovableDrive,
        on_state: StateCallback,
        cancel_token: Optional[CancellationToken],
    ) -> CreationState:
        try:
            return self._run(image, drive, on_state, cancel_token or CancellationToken())
        finally:
            self._busy.release()

    def _run(
        self,
        image: ImageInfo,
        drive: RemovableDrive,
        on_state: StateCallback,
        token: CancellationToken,
    ) -> CreationState:
        def publish(state: CreationState) -> None:
            self._state = state
            on_state(state)

        self._image_mount_point = None
        try:
            with operation_context(
                "create", image=image.name, drive=drive.identifier
            ) as run_log:
                self._pipeline(image, drive, publish, token, run_log)
        except CreationCancelledError:
            self._release_image()
            self._finish(Cancelled(), on_state)
        except CreatorError as error:
            self._release_image()
            self._finish(Failed(str(error)), on_state)
        except PermissionError:
            self._release_image()
            self._finish(Failed(str(PermissionDeniedError())), on_state)
        except Exception as error:
            log.exception(f"Unexpected failure during USB creation: {error}")
            self._release_image()
            self._finish(
                Failed(str(UnknownCreatorError(str(error) or type(error).__name__))), on_state
            )
        else:
            self._finish(Completed(), on_state)
        return self._state

    def _finish(self, state: CreationState, on_state: StateCallback) -> None:
        """Publish the terminal state; a failing callback is logged, not raised."""
        self._state = state
        try:
            on_state(state)
        except Exception as error:
            log.exception(f"State callback failed on {type(state).__name__}: {error}")

    def _pipeline(self, image, drive, publish, token, run_log) -> None:
        token.raise_if_cancelled()
        run_log.info("Step 1: Mounting ISO")
        publish(Mounting())
        image_mount_point = self._mount_image(image)
        run_log.info(f"ISO mounted at {image_mount_point}")

        token.raise_if_cancelled()
        run_log.info("Step 2: Checking for large files")
        files = self._inspect(image_mount_point, drive, run_log)
        layout = FilesystemLayout.for_large_files(has_oversized_file(files))
        run_log.info(f"Using {layout.filesystem} (GPT: {layout.use_gpt})")

        token.raise_if_cancelled()
        run_log.info("Step 3: Formatting USB drive")
        publish(Formatting())
        self._format(drive, layout)

        run_log.debug(f"Waiting {self.settle_delay}s for the drive to settle")
        self._sleep(self.settle_delay)

        token.raise_if_cancelled()
        run_log.info("Step 4: Mounting USB data partition")
        usb_mount_point = self._mount_data_partition(drive, layout)
        run_log.info(f"USB mounted at {usb_mount_point}")

        run_log.info(f"Step 5: Copying {len(files)} files")
        copied = copy_entries(
            files,
            image_mount_point,
            usb_mount_point,
            publish,
            checkpoint=token.raise_if_cancelled,
            clock=self._clock,
        )
        run_log.info(f"Copied {copied} bytes")

        run_log.info("Step 6: Finalizing")
        publish(Finalizing())
        with _translate_errors(lambda: UnknownCreatorError("Failed to sync the USB drive")):
            self.disk_utility.sync()
        self._release_image()

    def _mount_image(self, image: ImageInfo) -> str:
        with _translate_errors(lambda: MountFailedError(str(image.path))):
            mount_point = self.image_service.mount_image(image.path)
        if not mount_point:
            raise MountFailedError(str(image.path))
        self._image_mount_point = mount_point
        return mount_point

    def _inspect(self, mount_point: str, drive: RemovableDrive, run_log) -> List[FileEntry]:
        with _translate_errors(lambda: InvalidImageError(mount_point)):
            files = self.image_service.list_files(mount_point)
        if not files:
            raise InvalidImageError(mount_point)

        required = total_size(files)
        if drive.size_bytes and required > drive.size_bytes:
            raise InsufficientSpaceError(required, drive.size_bytes)

        large = oversized_files(files)
        run_log.info(f"Found {len(files)} files, {required} bytes")
        install_image = find_install_image(files)
        if install_image is None:
            run_log.warning("No install.wim or install.esd under sources/")
        else:
            run_log.info(f"Install image: {install_image.path} ({install_image.size} bytes)")
        if large:
            run_log.info(
                "Large files (>4GB): "
                + ", ".join(f"{entry.path} ({entry.size} bytes)" for entry in large)
            )
        return files

    def _format(self, drive: RemovableDrive, layout: FilesystemLayout) -> None:
        with _translate_errors(lambda: FormatFailedError(drive.device_path)):
            if layout.use_gpt:
                result = self.disk_utility.format_exfat(drive.device_path, self.volume_label)
            else:
                result = self.disk_utility.format_fat32(drive.device_path, self.volume_label)
        if result.failed:
            log.error(f"Format of {drive.device_path} failed: {result.output.strip()}")
            raise FormatFailedError(drive.device_path, result.output)

    def _mount_data_partition(self, drive: RemovableDrive, layout: FilesystemLayout) -> str:
        with _translate_errors(lambda: MountFailedError(drive.device_path)):
            partition = self.disk_utility.partition_path(drive, layout.data_partition)
            mount_point = self.disk_utility.mount(partition)
        if not mount_point:
            raise MountFailedError(partition)
        return mount_point

    def _release_image(self) -> None:
        """Detach the ISO if this run mounted it; failures are only logged."""
        mount_point = self._image_mount_point
        self._image_mount_point = None
        if not mount_point:
            return
        try:
            self.image_service.unmount_image(mount_point)
        except Exception as error:
            log.warning(f"Failed to unmount ISO at {mount_point}: {error}")
