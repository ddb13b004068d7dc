"""File copy from a mounted ISO to the formatted USB drive.

Small files are copied in one call. Files above ``STREAMING_THRESHOLD_BYTES``
(in practice install.wim/install.esd and a few driver packs) are streamed in
1 MiB chunks so progress can be published while they copy.

Progress:
    Every update is a ``Copying`` state whose ``progress`` is the fraction of
    the whole copy phase, capped at 0.99 until the phase finishes. Streaming
    updates are published at most once per ``PROGRESS_INTERVAL_SECONDS``; each
    publication is also a checkpoint where the caller may cancel the run.

Example:
    >>> from winusb_creator.storage.copier import copy_entries
    >>> copy_entries(files, "/Volumes/CCCOMA_X64FRE", "/Volumes/WINUSB", print)
"""

from __future__ import annotations

import contextlib
import shutil
import time
from pathlib import Path, PurePosixPath
from typing import Callable, Optional, Sequence

from winusb_creator.domain import Copying, FileEntry, copy_fraction
from winusb_creator.logging import LoggerFactory, ThrottledLogger
from winusb_creator.storage.exceptions import CopyFailedError
from winusb_creator.storage.inspector import total_size


STREAMING_THRESHOLD_BYTES = 50_000_000
CHUNK_SIZE = 1024 * 1024
PROGRESS_INTERVAL_SECONDS = 0.1

ProgressCallback = Callable[[Copying], None]
Checkpoint = Callable[[], None]

log = LoggerFactory.for_copy()
throttled_log = ThrottledLogger(log, interval_seconds=5.0)


def _prepare_destination(destination: Path) -> None:
    """Create parent directories and remove any file already at ``destination``."""
    try:
        destination.parent.mkdir(parents=True, exist_ok=True)
        with contextlib.suppress(FileNotFoundError):
            destination.unlink()
    except OSError as error:
        raise CopyFailedError(f"Cannot write {destination.name}: {error}") from error


def _write_all(dst, data: memoryview, name: str) -> None:
    offset = 0
    while offset < len(data):
        written = dst.write(data[offset:])
        if not written:
            raise CopyFailedError(f"Write error: {name}")
        offset += written


def _stream_copy(
    source: Path,
    destination: Path,
    already_copied: int,
    total_bytes: int,
    on_progress: ProgressCallback,
    checkpoint: Optional[Checkpoint],
    clock: Callable[[], float],
) -> int:
    name = destination.name
    buffer = bytearray(CHUNK_SIZE)
    view = memoryview(buffer)
    written_total = 0
    last_update = clock()

    try:
        src = open(source, "rb", buffering=0)  # noqa: SIM115
    except OSError as error:
        raise CopyFailedError(f"Cannot read {name}: {error}") from error
    with src:
        try:
            dst = open(destination, "wb", buffering=0)  # noqa: SIM115
        except OSError as error:
            raise CopyFailedError(f"Cannot write {name}: {error}") from error
        with dst:
            while True:
                try:
                    bytes_read = src.readinto(buffer)
                except OSError as error:
                    raise CopyFailedError(f"Read error: {name}") from error
                if bytes_read is None or bytes_read < 0:
                    raise CopyFailedError(f"Read error: {name}")
                if bytes_read == 0:
                    break

                try:
                    _write_all(dst, view[:bytes_read], name)
                except OSError as error:
                    raise CopyFailedError(f"Write error: {name}") from error
                written_total += bytes_read

                now = clock()
                if now - last_update >= PROGRESS_INTERVAL_SECONDS:
                    last_update = now
                    current = already_copied + written_total
                    on_progress(
                        Copying(
                            progress=copy_fraction(current, total_bytes),
                            current_file=name,
                            bytes_copied=current,
                            total_bytes=total_bytes,
                        )
                    )
                    throttled_log.debug(
                        name, f"Streaming {name}: {written_total} bytes written"
                    )
                    if checkpoint is not None:
                        checkpoint()
    return written_total


def copy_file(
    source: str | Path,
    destination: str | Path,
    file_size: int,
    already_copied: int,
    total_bytes: int,
    on_progress: ProgressCallback,
    *,
    checkpoint: Optional[Checkpoint] = None,
    clock: Callable[[], float] = time.monotonic,
) -> int:
    """Copy one file, streaming it with progress when it is large.

    Args:
        source: File inside the mounted image
        destination: Target path on the USB drive
        file_size: Size reported by the inspector; selects the copy strategy
        already_copied: Bytes copied by earlier files in this run
        total_bytes: Bytes to copy in the whole run
        on_progress: Receives ``Copying`` states during streaming copies
        checkpoint: Called after each progress update (may raise to cancel)
        clock: Monotonic time source

    Returns:
        Bytes written

    Raises:
        CopyFailedError: On any read or write failure
    """
    source = Path(source)
    destination = Path(destination)
    _prepare_destination(destination)

    if file_size <= STREAMING_THRESHOLD_BYTES:
        try:
            shutil.copyfile(source, destination)
        except OSError as error:
            raise CopyFailedError(str(error)) from error
        return file_size

    log.debug(f"Streaming copy of {source.name} ({file_size} bytes)")
    return _stream_copy(
        source,
        destination,
        already_copied,
        total_bytes,
        on_progress,
        checkpoint,
        clock,
    )


def copy_entries(
    entries: Sequence[FileEntry],
    source_root: str | Path,
    destination_root: str | Path,
    on_progress: ProgressCallback,
    *,
    checkpoint: Optional[Checkpoint] = None,
    clock: Callable[[], float] = time.monotonic,
) -> int:
    """Copy every entry from the image root to the drive root, in order.

    Publishes a 0.01 "Preparing..." update first, one update before each
    file, and a 0.99 "Finishing..." update after the last file.

    Returns:
        Total bytes copied
    """
    source_root = Path(source_root)
    destination_root = Path(destination_root)
    total_bytes = total_size(entries)
    copied = 0

    on_progress(
        Copying(
            progress=0.01,
            current_file="Preparing...",
            bytes_copied=0,
            total_bytes=total_bytes,
        )
    )

    for entry in entries:
        if checkpoint is not None:
            checkpoint()
        name = PurePosixPath(entry.path).name
        on_progress(
            Copying(
                progress=max(copy_fraction(copied, total_bytes), 0.01),
                current_file=name,
                bytes_copied=copied,
                total_bytes=total_bytes,
            )
        )
        log.trace(f"Copying {entry.path} ({entry.size} bytes)")
        copy_file(
            source_root / entry.path,
            destination_root / entry.path,
            entry.size,
            copied,
            total_bytes,
            on_progress,
            checkpoint=checkpoint,
            clock=clock,
        )
        copied += entry.size

    on_progress(
        Copying(
            progress=0.99,
            current_file="Finishing...",
            bytes_copied=total_bytes,
            total_bytes=total_bytes,
        )
    )
    return copied
