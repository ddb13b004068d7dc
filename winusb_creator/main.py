import argparse
import subprocess
import sys
from pathlib import Path

from winusb_creator.__version__ import __version__
from winusb_creator.config import settings
from winusb_creator.domain import (
    Completed,
    Copying,
    ImageInfo,
    human_size,
    is_terminal,
    overall_progress,
)
from winusb_creator.logging import LoggerFactory, setup_logging
from winusb_creator.services.creator import CancellationToken, UsbCreator
from winusb_creator.services.drives import drive_labels, find_drive, refresh_drives
from winusb_creator.services.statistics import TransferMonitor
from winusb_creator.storage.exceptions import CreatorError
from winusb_creator.storage.platform import get_disk_utility, get_image_service


log = LoggerFactory.for_system()


def build_parser():
    parser = argparse.ArgumentParser(
        prog="winusb-creator",
        description="Create a bootable Windows installer USB drive from an ISO",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("-d", "--debug", action="store_true", help="Enable verbose debug output")
    parser.add_argument("--trace", action="store_true", help="Also log per-chunk copy progress")
    parser.add_argument("--log-dir", type=Path, default=None, help="Directory for log files")

    subparsers = parser.add_subparsers(dest="command", required=True)
    subparsers.add_parser("list", help="List removable drives large enough for Windows")

    create = subparsers.add_parser("create", help="Write an ISO to a USB drive")
    create.add_argument("iso", type=Path, help="Path to the Windows ISO")
    create.add_argument(
        "drive",
        nargs="?",
        help="Drive identifier from 'list' (e.g. disk4 or sdb); optional with a single drive",
    )
    create.add_argument("-y", "--yes", action="store_true", help="Do not ask for confirmation")
    create.add_argument("--eject", action="store_true", help="Eject the drive when done")

    config = subparsers.add_parser("config", help="Show or change settings")
    config.add_argument("key", nargs="?", choices=sorted(settings.DEFAULT_SETTINGS), help="Setting name")
    config.add_argument("value", nargs="?", help="New value; omit to show the current one")
    return parser


def render_state(state, monitor):
    percent = overall_progress(state) * 100
    line = f"[{percent:5.1f}%] {state.description}"
    if isinstance(state, Copying):
        line = f"{line}  {human_size(state.bytes_copied)} of {human_size(state.total_bytes)}"
    for extra in (monitor.speed_text, monitor.eta_text):
        if extra:
            line = f"{line}  {extra}"
    return line


def _list_drives(disk_utility):
    drives = disk_utility.list_removable_drives()
    if not drives:
        print("No removable drives found (4GB or larger)")
        return 1
    for label in drive_labels(drives):
        print(label)
    return 0


def _confirm(drive):
    answer = input(f"All data on {drive.display_name} will be erased. Continue? [y/N] ")
    return answer.strip().lower() in ("y", "yes")


def _config(args):
    if args.key is None:
        for key in sorted(settings.settings_store.values):
            print(f"{key} = {settings.get_setting(key)}")
        return 0
    if args.value is None:
        print(settings.get_setting(args.key))
        return 0

    value = args.value
    default = settings.DEFAULT_SETTINGS[args.key]
    if isinstance(default, (int, float)):
        try:
            value = type(default)(args.value)
        except ValueError:
            print(f"Error: {args.key} must be a number")
            return 1
    settings.set_setting(args.key, value)
    log.info(f"Setting {args.key} changed to {value!r}")
    return 0


def _create(args, disk_utility, image_service):
    image = ImageInfo.from_path(args.iso)
    snapshot = refresh_drives(disk_utility, None)
    if args.drive is None:
        drive = snapshot.active
        if drive is None:
            if not snapshot.discovered:
                print("No removable drives found (4GB or larger)")
                return 1
            print("Several removable drives found; name one of:")
            for label in drive_labels(snapshot.discovered):
                print(label)
            return 1
    else:
        drive = find_drive(snapshot.discovered, args.drive)
        if drive is None:
            print(f"No removable drive named {args.drive}")
            return 1
    if not args.yes and not _confirm(drive):
        print("Aborted")
        return 1

    # The drive may have been unplugged while the prompt was open
    drive = refresh_drives(disk_utility, drive).active
    if drive is None:
        print("The selected drive is no longer connected")
        return 1

    monitor = TransferMonitor()
    monitor.start()

    def on_state(state):
        monitor.update(state)
        line = render_state(state, monitor)
        if isinstance(state, Copying):
            sys.stdout.write(f"\r{line}\033[K")
            sys.stdout.flush()
        else:
            sys.stdout.write(f"\r{line}\033[K\n")

    creator = UsbCreator(disk_utility, image_service)
    token = CancellationToken()
    thread = creator.start(image, drive, on_state, token)
    try:
        while thread.is_alive():
            thread.join(0.2)
    except KeyboardInterrupt:
        print("\nCancelling...")
        token.cancel()
        thread.join()

    final_state = creator.state
    if not is_terminal(final_state):
        return 1
    if isinstance(final_state, Completed):
        if args.eject:
            disk_utility.eject(drive.device_path)
        print("USB Created Successfully")
        return 0
    return 1


def main(argv=None):
    args = build_parser().parse_args(argv)
    setup_logging(debug=args.debug, trace=args.trace, log_dir=args.log_dir)
    if args.command == "config":
        return _config(args)

    try:
        disk_utility = get_disk_utility()
        image_service = get_image_service()
        if args.command == "list":
            return _list_drives(disk_utility)
        return _create(args, disk_utility, image_service)
    except CreatorError as error:
        log.error(str(error))
        print(f"Error: {error}")
        return 1
    except (subprocess.CalledProcessError, OSError) as error:
        log.error(f"Disk command failed: {error}")
        print(f"Error: {error}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
